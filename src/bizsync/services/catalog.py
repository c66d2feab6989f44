"""Business and article CRUD.

Every mutation follows the same steps:
1. mutate the Local Store (failures propagate to the caller)
2. reconcile the collection into the Durable Cache (failures are logged;
   the in-memory mutation is not rolled back)
3. nothing else: a live replication session picks the change up from the
   collection's change feed

Lookups only ever read the Local Store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..config import ARTICLES, BUSINESSES
from ..exceptions import DurablePersistenceError, StoreClosedError
from ..schemas import Article, Business

if TYPE_CHECKING:
    from ..local_store import LocalStore
    from ..sync.synchronizer import ConsistencySynchronizer

logger = logging.getLogger(__name__)

ARTICLE_FIELDS = ("name", "qty", "selling_price", "business_id")


class CatalogService:
    """CRUD over the businesses and articles collections."""

    def __init__(self, store: LocalStore, synchronizer: ConsistencySynchronizer) -> None:
        self.store = store
        self.synchronizer = synchronizer

    def _reconcile(self, collection: str) -> None:
        try:
            self.synchronizer.reconcile(collection)
        except (DurablePersistenceError, StoreClosedError) as e:
            logger.error("Error saving %s to durable cache: %s", collection, e)

    # Businesses

    def add_business(self, business: Business) -> Business:
        doc = self.store.collection(BUSINESSES).insert(business.to_document())
        self._reconcile(BUSINESSES)
        logger.info("Business inserted and persisted: %s", doc["id"])
        return Business.from_document(doc)

    def update_business(self, business_id: str, changes: dict[str, Any]) -> Business:
        """Update business fields. Raises NotFoundError if absent."""
        allowed = {k: v for k, v in changes.items() if k == "name"}
        doc = self.store.collection(BUSINESSES).update(business_id, allowed)
        self._reconcile(BUSINESSES)
        logger.info("Business updated and persisted: %s", business_id)
        return Business.from_document(doc)

    def delete_business(self, business_id: str) -> bool:
        """Delete a business; its articles are left in place (soft reference).

        Returns:
            False if no such business existed
        """
        removed = self.store.collection(BUSINESSES).remove(business_id)
        if not removed:
            return False
        self._reconcile(BUSINESSES)
        logger.info("Business deleted and persisted: %s", business_id)
        return True

    def get_business(self, business_id: str) -> Business | None:
        doc = self.store.collection(BUSINESSES).get(business_id)
        return Business.from_document(doc) if doc else None

    def list_businesses(self) -> list[Business]:
        docs = self.store.collection(BUSINESSES).all()
        return [Business.from_document(d) for d in sorted(docs, key=lambda d: d["name"])]

    # Articles

    def add_article(self, article: Article) -> Article:
        doc = self.store.collection(ARTICLES).insert(article.to_document())
        self._reconcile(ARTICLES)
        if self.store.collection(BUSINESSES).get(article.business_id) is None:
            logger.warning(
                "Article %s references unknown business %s", article.id, article.business_id
            )
        logger.info("Article inserted and persisted: %s", doc["id"])
        return Article.from_document(doc)

    def update_article(self, article_id: str, changes: dict[str, Any]) -> Article:
        """Update article fields. Raises NotFoundError if absent."""
        allowed = {k: v for k, v in changes.items() if k in ARTICLE_FIELDS}
        doc = self.store.collection(ARTICLES).update(article_id, allowed)
        self._reconcile(ARTICLES)
        logger.info("Article updated and persisted: %s", article_id)
        return Article.from_document(doc)

    def delete_article(self, article_id: str) -> bool:
        removed = self.store.collection(ARTICLES).remove(article_id)
        if not removed:
            return False
        self._reconcile(ARTICLES)
        logger.info("Article deleted and persisted: %s", article_id)
        return True

    def get_article(self, article_id: str) -> Article | None:
        doc = self.store.collection(ARTICLES).get(article_id)
        return Article.from_document(doc) if doc else None

    def find_articles_by_business(self, business_id: str) -> list[Article]:
        docs = self.store.collection(ARTICLES).find(business_id=business_id)
        return [Article.from_document(d) for d in sorted(docs, key=lambda d: d["name"])]

    def list_articles(self) -> list[Article]:
        docs = self.store.collection(ARTICLES).all()
        return [Article.from_document(d) for d in sorted(docs, key=lambda d: d["name"])]
