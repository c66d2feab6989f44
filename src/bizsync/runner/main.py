"""
CLI main entry point.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..exceptions import SyncError
from ..runtime import SyncRuntime
from ..schemas import Article, Business

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bizsync",
        description="Offline-first business/article store replicated to CouchDB",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Start with connectivity reported as offline",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write an example config file")
    subparsers.add_parser("status", help="Show sync status and storage statistics")
    subparsers.add_parser("discover", help="Forget the saved endpoint and probe candidates")
    subparsers.add_parser("init-remote", help="Create the remote CouchDB databases")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Run replication against CouchDB")
    sync_parser.add_argument(
        "--once",
        action="store_true",
        help="Replicate once (pull then push) instead of continuously",
    )
    sync_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Seconds to keep live replication running (default: until Ctrl+C)",
    )

    # add-business command
    business_parser = subparsers.add_parser("add-business", help="Add a business")
    business_parser.add_argument("--id", required=True, help="Business id")
    business_parser.add_argument("--name", required=True, help="Business name")

    # add-article command
    article_parser = subparsers.add_parser("add-article", help="Add an article")
    article_parser.add_argument("--id", required=True, help="Article id")
    article_parser.add_argument("--name", required=True, help="Article name")
    article_parser.add_argument("--qty", type=int, required=True, help="Quantity in stock")
    article_parser.add_argument("--price", type=float, required=True, help="Selling price")
    article_parser.add_argument(
        "--business-id", required=True, help="Id of the owning business"
    )

    subparsers.add_parser("list", help="List local businesses and articles")
    subparsers.add_parser("reset", help="Clear all local data (remote untouched)")

    # purge command
    purge_parser = subparsers.add_parser("purge", help="Permanently delete all data")
    purge_parser.add_argument(
        "--remote",
        action="store_true",
        help="Also delete the remote CouchDB databases",
    )
    purge_parser.add_argument(
        "--no-recreate",
        action="store_true",
        help="Do not recreate empty remote databases after deleting them",
    )

    subparsers.add_parser("verify-empty", help="Check that the remote databases are empty")

    return parser


def _report(result) -> int:
    """Print an OperationResult and turn it into an exit code."""
    if result:
        print(f"✓ {result.message}")
        return 0
    print(f"❌ {result.message}")
    return 1


def cmd_init_config(config_path: Path) -> int:
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote example config to {config_path}")
    return 0


def cmd_status(runtime: SyncRuntime) -> int:
    """Show sync status."""
    stats = runtime.maintenance.get_storage_stats()
    status = stats.sync_status

    print("\n📊 Sync Status")
    print("=" * 40)
    print(f"  Environment:     {runtime.config.environment}")
    print(f"  Online:          {'yes' if status.is_online else 'no'}")
    print(f"  Sync enabled:    {'yes' if status.sync_enabled else 'no'}")
    print(f"  CouchDB URL:     {status.current_url or '-'}")
    for collection, database in status.collection_databases.items():
        state = status.session_states.get(collection, "Stopped")
        print(f"  {collection:<15}  db={database} session={state}")
        if collection in status.errors:
            print(f"      error: {status.errors[collection]}")
    print()
    print("  Durable cache:")
    for collection, count in stats.counts.items():
        print(f"    {collection:<13} {count} documents")
    print()
    return 0


def cmd_sync(runtime: SyncRuntime, once: bool, duration: float | None) -> int:
    """Run replication until done (one-shot) or for the given duration."""
    status = runtime.controller.get_sync_status()
    if not any(status.per_collection_active.values()):
        return _report(runtime.controller.force_sync_now())

    if once:
        print("🔄 Replicating once...")
        runtime.manager.join()
    else:
        print("🔄 Live replication running (Ctrl+C to stop)...")
        try:
            if duration is None:
                while True:
                    time.sleep(1)
            else:
                time.sleep(duration)
        except KeyboardInterrupt:
            print()

    status = runtime.controller.get_sync_status()
    for collection, session in runtime.manager.sessions.items():
        print(
            f"  {collection:<13} pulled={session.docs_pulled} pushed={session.docs_pushed}"
            f" state={session.state.value}"
        )
    if status.errors:
        print("⚠️  Errors encountered:")
        for collection, error in status.errors.items():
            print(f"   - {collection}: {error}")
        return 1
    print("✓ Sync finished")
    return 0


def cmd_add_business(runtime: SyncRuntime, business_id: str, name: str) -> int:
    business = runtime.catalog.add_business(Business(id=business_id, name=name))
    print(f"✓ Added business [{business.id}] {business.name}")
    return 0


def cmd_add_article(
    runtime: SyncRuntime,
    article_id: str,
    name: str,
    qty: int,
    price: float,
    business_id: str,
) -> int:
    article = runtime.catalog.add_article(
        Article(id=article_id, name=name, qty=qty, selling_price=price, business_id=business_id)
    )
    print(f"✓ Added article [{article.id}] {article.name} ({article.qty} @ {article.selling_price})")
    return 0


def cmd_list(runtime: SyncRuntime) -> int:
    businesses = runtime.catalog.list_businesses()
    print(f"\n🏢 Businesses ({len(businesses)})")
    for business in businesses:
        articles = runtime.catalog.find_articles_by_business(business.id)
        print(f"  [{business.id}] {business.name} - {len(articles)} article(s)")
        for article in articles:
            print(f"     {article.name}: {article.qty} @ {article.selling_price}")

    known = {b.id for b in businesses}
    orphans = [a for a in runtime.catalog.list_articles() if a.business_id not in known]
    if orphans:
        print(f"\n📦 Articles without a local business ({len(orphans)})")
        for article in orphans:
            print(f"  [{article.id}] {article.name} (business {article.business_id})")
    print()
    return 0


def cmd_purge(runtime: SyncRuntime, remote: bool, recreate: bool) -> int:
    if remote:
        print("🗑  Deleting remote databases and all local data...")
    else:
        print("🗑  Deleting all local data...")
    return _report(
        runtime.maintenance.permanently_delete_all_data(delete_remote=remote, recreate=recreate)
    )


def cmd_verify_empty(runtime: SyncRuntime) -> int:
    result = runtime.controller.verify_remote_databases_empty()
    if not result:
        return _report(result)
    print(f"  {result.message}")
    if result.is_empty:
        print("✓ Remote databases are empty")
        return 0
    print("⚠️  Remote databases still contain documents")
    return 1


# Commands that only touch local data never start replication
LOCAL_COMMANDS = {"add-business", "add-article", "list", "reset"}


def run_command(parsed: argparse.Namespace, config: Config) -> int:
    """Boot the runtime, dispatch one command, shut down."""
    if parsed.command == "sync" and parsed.once:
        config.replication.live = False
    online = not parsed.offline and parsed.command not in LOCAL_COMMANDS

    runtime = SyncRuntime.boot(config, online=online)
    try:
        if parsed.command == "status":
            return cmd_status(runtime)
        elif parsed.command == "discover":
            return _report(runtime.controller.rediscover_endpoint())
        elif parsed.command == "init-remote":
            return _report(runtime.controller.create_remote_databases())
        elif parsed.command == "sync":
            return cmd_sync(runtime, parsed.once, parsed.duration)
        elif parsed.command == "add-business":
            return cmd_add_business(runtime, parsed.id, parsed.name)
        elif parsed.command == "add-article":
            return cmd_add_article(
                runtime, parsed.id, parsed.name, parsed.qty, parsed.price, parsed.business_id
            )
        elif parsed.command == "list":
            return cmd_list(runtime)
        elif parsed.command == "reset":
            return _report(runtime.reset())
        elif parsed.command == "purge":
            return cmd_purge(runtime, parsed.remote, not parsed.no_recreate)
        elif parsed.command == "verify-empty":
            return cmd_verify_empty(runtime)
        print(f"❌ Unknown command: {parsed.command}")
        return 1
    except SyncError as e:
        logger.debug("Command %s failed", parsed.command, exc_info=True)
        print(f"❌ {e}")
        return 1
    finally:
        runtime.shutdown()


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    try:
        return run_command(parsed, config)
    except (ConfigValidationError, SyncError) as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
