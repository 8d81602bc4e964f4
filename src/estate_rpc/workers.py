"""
Worker bootstrap: builds the three action tables from settings and wires a
Dispatcher to the queue of one topic.
"""

import logging
from typing import Callable, Optional

import httpx

from estate_rpc.config import Settings
from estate_rpc.handlers import AuthHandlers, MarketHandlers, PropertyHandlers, TokenIssuer
from estate_rpc.models.actions import Topic
from estate_rpc.registry import ActionTable, ensure_disjoint
from estate_rpc.storage import Database
from estate_rpc.dispatcher import Dispatcher
from estate_rpc.transport.broker import Broker

logger = logging.getLogger(__name__)


def build_market(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> MarketHandlers:
    """Market handlers own an HTTP client; the caller closes them."""
    return MarketHandlers(
        settings.rentcast_api_key,
        settings.google_maps_api_key,
        rentcast_base_url=settings.rentcast_base_url,
        maps_base_url=settings.google_maps_base_url,
        timeout=settings.http_timeout,
        transport=transport,
    )


def build_tables(
    settings: Settings,
    market: MarketHandlers,
    db: Optional[Database] = None,
) -> dict[str, ActionTable]:
    """Action tables keyed by topic. Raises DuplicateActionError on overlap."""
    db = db or Database(settings.database_path)
    tokens = TokenIssuer(
        settings.access_token_secret,
        settings.refresh_token_secret,
        access_ttl=settings.access_token_ttl,
        refresh_ttl=settings.refresh_token_ttl,
    )
    tables = {
        Topic.AUTH: AuthHandlers(db, tokens).table(),
        Topic.PROPERTY: PropertyHandlers(db).table(),
        Topic.MARKET: market.table(),
    }
    ensure_disjoint(*tables.values())
    return tables


def build_dispatcher(
    topic: str,
    broker: Broker,
    settings: Settings,
    tables: dict[str, ActionTable],
) -> Dispatcher:
    queue = settings.queues.for_topic(topic)
    logger.debug("Building %s dispatcher on %s", topic, queue)
    return Dispatcher(broker, queue, tables[topic])


async def run_worker(
    topic: str,
    broker: Broker,
    settings: Settings,
    *,
    market: Optional[MarketHandlers] = None,
    db: Optional[Database] = None,
    on_start: Optional[Callable[[Dispatcher], None]] = None,
) -> None:
    """Serve ``topic`` until the dispatcher is stopped, then close the broker and HTTP client."""
    market = market or build_market(settings)
    try:
        dispatcher = build_dispatcher(topic, broker, settings, build_tables(settings, market, db))
        if on_start is not None:
            on_start(dispatcher)
        await dispatcher.run()
    finally:
        await market.close()
        await broker.close()


async def setup_queues(broker: Broker, settings: Settings) -> list[str]:
    """Declare every durable request queue. Safe to run repeatedly."""
    await broker.connect()
    declared = []
    for name in settings.queues.all():
        declared.append(await broker.declare_queue(name, durable=True))
        logger.info("Declared queue %s", name)
    return declared
