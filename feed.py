"""
Live catalog view.

Each store subscription is a producer of snapshot events (the full result
set of its query). A single consumer owns the catalog state and recomputes
the derived view from every event, so applying the same snapshot twice
leaves the view unchanged.
"""
import asyncio
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

from pymongo.errors import PyMongoError

import catalog
from database import open_change_stream
from logging_config import get_logger
from schemas import Order, Product, parse_documents

logger = get_logger(__name__)

# query each subscription runs; best sellers only look at delivered orders
SNAPSHOT_QUERIES = {
    "products": {},
    "orders": {"status": "delivered"},
}


@dataclass(frozen=True)
class SnapshotEvent:
    collection: str
    documents: Tuple[dict, ...]


@dataclass
class CatalogView:
    products: List[Product] = field(default_factory=list)
    new_arrivals: List[Product] = field(default_factory=list)
    best_sellers: List[Product] = field(default_factory=list)
    facets: catalog.Facets = field(default_factory=catalog.Facets)

    def to_payload(self) -> dict:
        def dump(items):
            return [p.model_dump(mode="json", by_alias=True) for p in items]
        return {
            "products": dump(self.products),
            "newArrivals": dump(self.new_arrivals),
            "bestSellers": dump(self.best_sellers),
            "facets": asdict(self.facets),
        }


@dataclass(frozen=True)
class CatalogState:
    products: Tuple[Product, ...] = ()
    orders: Tuple[Order, ...] = ()
    view: CatalogView = field(default_factory=CatalogView)


def _parse(model, documents):
    return tuple(parse_documents(model, documents))


def build_view(products, orders, now: datetime) -> CatalogView:
    active = [p for p in products if p.is_active]
    return CatalogView(
        products=catalog.list_all(active),
        new_arrivals=catalog.list_new_arrivals(active, now),
        best_sellers=catalog.list_best_sellers(active, orders),
        facets=catalog.facets(active),
    )


def reduce(state: CatalogState, event: SnapshotEvent, now: datetime) -> CatalogState:
    if event.collection == "products":
        state = replace(state, products=_parse(Product, event.documents))
    elif event.collection == "orders":
        state = replace(state, orders=_parse(Order, event.documents))
    else:
        return state
    return replace(state, view=build_view(state.products, state.orders, now))


class CatalogFeed:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = CatalogState()

    @property
    def view(self) -> CatalogView:
        return self.state.view

    async def publish(self, event: SnapshotEvent):
        await self._queue.put(event)

    async def close(self):
        await self._queue.put(None)

    async def run(self, on_view: Optional[Callable[[CatalogView], Awaitable[None]]] = None) -> CatalogView:
        """Consume events until close(); calls on_view after every recompute."""
        while True:
            event = await self._queue.get()
            if event is None:
                break
            self.state = reduce(self.state, event, self._clock())
            if on_view is not None:
                await on_view(self.state.view)
        return self.state.view


def _read_snapshot(database, collection_name: str) -> Tuple[dict, ...]:
    return tuple(database[collection_name].find(SNAPSHOT_QUERIES.get(collection_name, {})))


async def watch_snapshots(database, collection_name: str, feed: CatalogFeed,
                          stop: Optional[threading.Event] = None):
    """
    Publish the current result set, then a fresh one after every change.

    Runs until `stop` is set or the change stream dies. The stream is polled
    with try_next(), so a stop request is noticed within one poll interval
    and the stream is always closed on the way out.
    """
    stop = stop or threading.Event()
    documents = await asyncio.to_thread(_read_snapshot, database, collection_name)
    await feed.publish(SnapshotEvent(collection_name, documents))

    try:
        stream = await asyncio.to_thread(open_change_stream, database, collection_name)
    except PyMongoError as e:
        logger.warning("change_stream_unavailable", collection=collection_name, error=str(e))
        return

    try:
        while not stop.is_set() and stream.alive:
            change = await asyncio.to_thread(stream.try_next)
            if change is None or stop.is_set():
                continue
            documents = await asyncio.to_thread(_read_snapshot, database, collection_name)
            await feed.publish(SnapshotEvent(collection_name, documents))
    except PyMongoError as e:
        logger.warning("change_stream_closed", collection=collection_name, error=str(e))
    finally:
        stream.close()
    logger.info("snapshot_producer_finished", collection=collection_name)


@dataclass
class Subscription:
    tasks: List[asyncio.Task]
    stop: threading.Event


def subscribe(database, feed: CatalogFeed) -> Subscription:
    stop = threading.Event()
    tasks = [
        asyncio.create_task(watch_snapshots(database, name, feed, stop))
        for name in SNAPSHOT_QUERIES
    ]
    return Subscription(tasks, stop)


async def unsubscribe(subscription: Subscription):
    """Ask the producers to stop and wait until their streams are closed."""
    subscription.stop.set()
    results = await asyncio.gather(*subscription.tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.warning("snapshot_producer_failed", error=repr(result))
