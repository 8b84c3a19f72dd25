import asyncio
from datetime import datetime, timedelta, timezone

from bson import ObjectId
from pymongo.errors import OperationFailure

import feed
from feed import CatalogFeed, CatalogState, SnapshotEvent
from tests.conftest import FakeChangeStream

NOW = datetime(2024, 6, 15, tzinfo=timezone.utc)

P1, P2 = ObjectId(), ObjectId()

PRODUCTS = (
    {"_id": P1, "name": "Shirt", "price": 10.0, "category": "Men", "createdAt": NOW - timedelta(days=40)},
    {"_id": P2, "name": "Dress", "price": 20.0, "category": "Women", "createdAt": NOW - timedelta(days=2)},
)
ORDERS = (
    {"_id": ObjectId(), "status": "delivered", "items": [{"productId": str(P1), "quantity": 3}]},
    {"_id": ObjectId(), "status": "delivered", "items": [{"productId": str(P2), "quantity": 5}]},
)


def test_reduce_recomputes_view():
    state = feed.reduce(CatalogState(), SnapshotEvent("products", PRODUCTS), NOW)
    assert [p.name for p in state.view.products] == ["Dress", "Shirt"]
    assert [p.name for p in state.view.new_arrivals] == ["Dress"]
    assert state.view.best_sellers == []
    assert state.view.facets.categories == ["Men", "Women"]

    state = feed.reduce(state, SnapshotEvent("orders", ORDERS), NOW)
    assert [p.name for p in state.view.best_sellers] == ["Dress", "Shirt"]


def test_orders_before_products_still_resolve():
    state = feed.reduce(CatalogState(), SnapshotEvent("orders", ORDERS), NOW)
    assert state.view.best_sellers == []
    state = feed.reduce(state, SnapshotEvent("products", PRODUCTS), NOW)
    assert [p.name for p in state.view.best_sellers] == ["Dress", "Shirt"]


def test_redelivered_snapshot_is_idempotent():
    state = feed.reduce(CatalogState(), SnapshotEvent("products", PRODUCTS), NOW)
    again = feed.reduce(state, SnapshotEvent("products", PRODUCTS), NOW)
    assert again.view == state.view


def test_unknown_collection_and_bad_documents():
    state = feed.reduce(CatalogState(), SnapshotEvent("messages", ({"_id": 1},)), NOW)
    assert state == CatalogState()

    broken = PRODUCTS + ({"_id": ObjectId(), "name": "Broken", "price": "not a number"},)
    state = feed.reduce(CatalogState(), SnapshotEvent("products", broken), NOW)
    assert len(state.view.products) == 2


def test_payload_uses_document_field_names():
    state = feed.reduce(CatalogState(), SnapshotEvent("products", PRODUCTS), NOW)
    payload = state.view.to_payload()
    assert set(payload) == {"products", "newArrivals", "bestSellers", "facets"}
    assert payload["products"][0]["id"] == str(P2)
    assert "createdAt" in payload["products"][0]


def test_feed_consumes_until_closed():
    seen = []

    async def scenario():
        catalog_feed = CatalogFeed(clock=lambda: NOW)

        async def on_view(view):
            seen.append([p.name for p in view.best_sellers])

        consumer = asyncio.create_task(catalog_feed.run(on_view))
        await catalog_feed.publish(SnapshotEvent("products", PRODUCTS))
        await catalog_feed.publish(SnapshotEvent("orders", ORDERS))
        await catalog_feed.close()
        return await consumer

    view = asyncio.run(scenario())
    assert seen == [[], ["Dress", "Shirt"]]
    assert [p.name for p in view.new_arrivals] == ["Dress"]


def test_watch_snapshots_republishes_after_each_change(db, monkeypatch):
    db["products"].insert_many([dict(d) for d in PRODUCTS])
    stream = FakeChangeStream([{"operationType": "update"}], end_when_drained=True)
    monkeypatch.setattr(feed, "open_change_stream", lambda database, name: stream)

    async def scenario():
        catalog_feed = CatalogFeed(clock=lambda: NOW)
        await feed.watch_snapshots(db, "products", catalog_feed)
        await catalog_feed.close()
        events = []
        await catalog_feed.run(lambda view: _collect(events, view))
        return events

    async def _collect(events, view):
        events.append(len(view.products))

    assert asyncio.run(scenario()) == [2, 2]
    assert stream.closed


def test_unsubscribe_stops_producers_and_closes_streams(db, monkeypatch):
    streams = []

    def open_stream(database, name):
        stream = FakeChangeStream(poll=0.05)
        streams.append(stream)
        return stream

    monkeypatch.setattr(feed, "open_change_stream", open_stream)

    async def scenario():
        catalog_feed = CatalogFeed(clock=lambda: NOW)
        subscription = feed.subscribe(db, catalog_feed)
        while len(streams) < len(feed.SNAPSHOT_QUERIES):
            await asyncio.sleep(0.01)
        await feed.unsubscribe(subscription)
        return subscription

    subscription = asyncio.run(scenario())
    assert all(task.done() and not task.cancelled() for task in subscription.tasks)
    assert [s.closed for s in streams] == [True, True]
    assert [s.polls_in_flight for s in streams] == [0, 0]


def test_store_without_change_streams_ends_producer(db, monkeypatch):
    def refuse(database, name):
        raise OperationFailure("The $changeStream stage is only supported on replica sets")

    monkeypatch.setattr(feed, "open_change_stream", refuse)

    async def scenario():
        catalog_feed = CatalogFeed(clock=lambda: NOW)
        await feed.watch_snapshots(db, "orders", catalog_feed)
        await catalog_feed.close()
        return await catalog_feed.run()

    assert asyncio.run(scenario()).best_sellers == []
