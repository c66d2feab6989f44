"""Tests for the in-memory Local Store."""

import pytest

from bizsync.exceptions import (
    AlreadyExistsError,
    NotFoundError,
    SchemaValidationError,
    StoreClosedError,
)
from bizsync.local_store import ORIGIN_LOCAL, ORIGIN_REMOTE, LocalStore
from bizsync.schemas import SCHEMAS


class TestCollectionWrites:
    """Insert / upsert / update / remove."""

    def test_insert_and_get(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)

        assert businesses.get("b1") == sample_business
        assert businesses.count() == 1

    def test_insert_duplicate_raises(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)

        with pytest.raises(AlreadyExistsError) as exc_info:
            businesses.insert({"id": "b1", "name": "Other"})

        assert exc_info.value.doc_id == "b1"
        assert businesses.get("b1")["name"] == "Shop A"

    def test_insert_invalid_raises(self, store):
        with pytest.raises(SchemaValidationError):
            store.collection("articles").insert({"id": "a1", "name": "Pen"})
        assert store.collection("articles").count() == 0

    def test_returned_documents_are_copies(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)

        doc = businesses.get("b1")
        doc["name"] = "mutated"

        assert businesses.get("b1")["name"] == "Shop A"

    def test_upsert_reports_change(self, store, sample_business):
        businesses = store.collection("businesses")

        assert businesses.upsert(sample_business) is True
        assert businesses.upsert(dict(sample_business)) is False
        assert businesses.upsert({"id": "b1", "name": "Shop B"}) is True
        assert businesses.get("b1")["name"] == "Shop B"

    def test_update_field_level(self, store, sample_article):
        articles = store.collection("articles")
        articles.insert(sample_article)

        updated = articles.update("a1", {"qty": 7})

        assert updated["qty"] == 7
        assert updated["name"] == "Pen"

    def test_update_same_value_records_no_change(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)
        seq = businesses.last_seq

        businesses.update("b1", {"name": "Shop A"})

        assert businesses.last_seq == seq

    def test_update_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            store.collection("businesses").update("nope", {"name": "x"})

    def test_update_primary_key_rejected(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)

        with pytest.raises(SchemaValidationError, match="immutable"):
            businesses.update("b1", {"id": "b2"})

    def test_update_invalid_value_rejected(self, store, sample_article):
        articles = store.collection("articles")
        articles.insert(sample_article)

        with pytest.raises(SchemaValidationError):
            articles.update("a1", {"qty": "many"})
        assert articles.get("a1")["qty"] == 5

    def test_remove(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)

        assert businesses.remove("b1") is True
        assert businesses.remove("b1") is False
        assert businesses.get("b1") is None

    def test_clear(self, store):
        businesses = store.collection("businesses")
        businesses.insert({"id": "b1", "name": "A"})
        businesses.insert({"id": "b2", "name": "B"})

        assert businesses.clear() == 2
        assert businesses.count() == 0


class TestCollectionReads:
    def test_find_by_selector(self, store, sample_article):
        articles = store.collection("articles")
        articles.insert(sample_article)
        articles.insert({**sample_article, "id": "a2", "name": "Ink"})
        articles.insert({**sample_article, "id": "a3", "business_id": "b2"})

        found = articles.find(business_id="b1")

        assert sorted(d["id"] for d in found) == ["a1", "a2"]
        assert articles.find(business_id="b9") == []
        assert len(articles.all()) == 3


class TestChangeFeed:
    """Change events consumed by the push channel."""

    def test_events_recorded_with_origin(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)
        businesses.upsert({"id": "b2", "name": "Remote"}, origin=ORIGIN_REMOTE)

        local, _ = businesses.changes_since(0, origin=ORIGIN_LOCAL)
        remote, _ = businesses.changes_since(0, origin=ORIGIN_REMOTE)

        assert [e.doc_id for e in local] == ["b1"]
        assert [e.doc_id for e in remote] == ["b2"]

    def test_checkpoint_skips_other_origins(self, store):
        businesses = store.collection("businesses")
        businesses.upsert({"id": "b1", "name": "Remote"}, origin=ORIGIN_REMOTE)

        events, checkpoint = businesses.changes_since(0)

        assert events == []
        assert checkpoint == businesses.last_seq
        assert businesses.changes_since(checkpoint) == ([], checkpoint)

    def test_events_deduplicated_by_id(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)
        businesses.update("b1", {"name": "Renamed"})
        businesses.remove("b1")

        events, checkpoint = businesses.changes_since(0)

        assert [e.doc_id for e in events] == ["b1"]
        assert checkpoint == 3

    def test_only_latest_event_per_document_kept(self, store):
        businesses = store.collection("businesses")
        for i in range(50):
            businesses.upsert({"id": "b1", "name": f"Shop {i}"})
        businesses.insert({"id": "b2", "name": "Other"})
        businesses.update("b1", {"name": "Final"})

        events, checkpoint = businesses.changes_since(0)

        assert [(e.doc_id, e.seq) for e in events] == [("b2", 51), ("b1", 52)]
        assert checkpoint == 52

    def test_remote_clear_supersedes_local_history(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)
        businesses.update("b1", {"name": "Renamed"})

        businesses.clear(origin=ORIGIN_REMOTE)

        assert businesses.changes_since(0, origin=ORIGIN_LOCAL)[0] == []
        assert [e.deleted for e in businesses.changes_since(0, origin=ORIGIN_REMOTE)[0]] == [True]

    def test_has_change_since(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)

        assert businesses.has_change_since("b1", 0)
        assert not businesses.has_change_since("b1", 1)
        assert not businesses.has_change_since("b9", 0)

        businesses.upsert({"id": "b1", "name": "Remote"}, origin=ORIGIN_REMOTE)

        assert not businesses.has_change_since("b1", 0)

    def test_apply_remote_skips_unpushed_local_change(self, store, sample_business):
        businesses = store.collection("businesses")
        businesses.insert(sample_business)

        assert businesses.apply_remote("b1", {"id": "b1", "name": "Remote"}, local_since=0) is False
        assert businesses.get("b1") == sample_business
        assert businesses.apply_remote("b1", {"id": "b1", "name": "Remote"}, local_since=1) is True
        assert businesses.get("b1") == {"id": "b1", "name": "Remote"}
        assert businesses.apply_remote("b1", None, local_since=1) is True
        assert businesses.get("b1") is None

    def test_limit_moves_checkpoint_to_last_included_event(self, store):
        businesses = store.collection("businesses")
        for i in range(5):
            businesses.insert({"id": f"b{i}", "name": f"Shop {i}"})

        events, checkpoint = businesses.changes_since(0, limit=2)

        assert [e.doc_id for e in events] == ["b0", "b1"]
        assert checkpoint == 2
        rest, checkpoint = businesses.changes_since(checkpoint, limit=10)
        assert [e.doc_id for e in rest] == ["b2", "b3", "b4"]
        assert checkpoint == 5

    def test_subscribers_notified(self, store, sample_business):
        received = []
        businesses = store.collection("businesses")
        businesses.subscribe(received.append)

        businesses.insert(sample_business)
        businesses.remove("b1")
        businesses.unsubscribe(received.append)
        businesses.insert(sample_business)

        assert [(e.doc_id, e.deleted) for e in received] == [("b1", False), ("b1", True)]

    def test_failing_subscriber_does_not_break_writes(self, store, sample_business):
        def broken(event):
            raise RuntimeError("boom")

        businesses = store.collection("businesses")
        businesses.subscribe(broken)
        businesses.insert(sample_business)

        assert businesses.count() == 1


class TestLocalStore:
    def test_collections_registered(self, store):
        assert store.collection_names == ["businesses", "articles"]

    def test_add_collections_idempotent(self, store, sample_business):
        store.collection("businesses").insert(sample_business)
        store.add_collections(SCHEMAS)

        assert store.collection("businesses").count() == 1

    def test_unknown_collection(self, store):
        with pytest.raises(KeyError):
            store.collection("customers")

    def test_destroy(self, sample_business):
        local = LocalStore("doomed")
        local.add_collections(SCHEMAS)
        businesses = local.collection("businesses")
        businesses.insert(sample_business)

        local.destroy()
        local.destroy()

        assert local.destroyed
        with pytest.raises(StoreClosedError):
            local.collection("businesses")
        with pytest.raises(StoreClosedError):
            businesses.get("b1")
        with pytest.raises(StoreClosedError):
            local.add_collections(SCHEMAS)
