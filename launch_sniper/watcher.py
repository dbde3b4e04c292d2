"""
Event Watcher - the eyes of the sniper.

Two polling loops:
1. Creation loop: asks for the newest CreatedEvent over and over, with only
   a cooperative yield in between. Detection latency is everything here.
2. Sell loop: every ~100ms, looks at the last few turbospump::sell calls. If
   the seller created a token we hold, we sell all of it right away, in a
   detached task so the next poll is never held up.

Each stream keeps a watermark (the last transaction digest handled) so a
batch that comes back unchanged is not processed twice. Watermarks live in
memory only.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from launch_sniper.config import MIST_PER_SUI, SUI_COIN_TYPE, LaunchpadConfig, WatcherConfig
from launch_sniper.ledger.gateway import LedgerEvent
from launch_sniper.strategies.auto_buy import AutoBuyEngine, TokenMetrics
from launch_sniper.tasks import BoundedDispatcher, DetachedTasks
from launch_sniper.trading.catalog import Token, TokenCatalog, generate_listing_id
from launch_sniper.trading.executor import OrderExecutor

logger = logging.getLogger(__name__)


def ensure_0x_prefix(address: str) -> str:
    return address if address.startswith("0x") else f"0x{address}"


@dataclass
class LaunchEvent:
    tx_digest: str
    name: str
    symbol: str
    token_address: str
    pool_id: str = ""
    creator_address: str = ""
    description: str = ""
    uri: str = ""
    twitter: str = ""
    telegram: str = ""
    website: str = ""

    @classmethod
    def from_ledger_event(cls, event: LedgerEvent) -> Optional["LaunchEvent"]:
        """None when name, symbol or token address is missing."""
        data = event.parsed_json or {}
        name = data.get("name") or ""
        symbol = data.get("symbol") or ""
        token_address = data.get("token_address") or ""
        if not name or not symbol or not token_address:
            return None
        creator = data.get("created_by") or ""
        pool_id = data.get("pool_id") or ""
        return cls(
            tx_digest=event.tx_digest,
            name=name,
            symbol=symbol,
            token_address=ensure_0x_prefix(token_address),
            pool_id=ensure_0x_prefix(pool_id) if pool_id else "",
            creator_address=ensure_0x_prefix(creator) if creator else "Unknown Creator",
            description=data.get("description") or "",
            uri=data.get("uri") or "",
            twitter=data.get("twitter") or "",
            telegram=data.get("telegram") or "",
            website=data.get("website") or "",
        )


@dataclass
class CreatorSellEvent:
    tx_digest: str
    seller: str
    token_address: str


def _struct_field(fields: list, name: str) -> dict:
    for f in fields:
        if f.get("name") == name:
            return f.get("value") or {}
    return {}


def parse_sell_transaction(tx: dict) -> list[CreatorSellEvent]:
    """Pull the sell events (is_buy == false) out of a GraphQL transaction node."""
    digest = tx.get("digest") or ""
    seller = (tx.get("sender") or {}).get("address")
    events = (((tx.get("effects") or {}).get("events") or {}).get("nodes")) or []
    found = []
    for event in events:
        fields = ((event.get("contents") or {}).get("data") or {}).get("Struct")
        if not fields:
            continue
        if _struct_field(fields, "is_buy").get("Bool") is not False:
            continue
        token_address = _struct_field(fields, "token_address").get("String")
        if token_address and seller:
            found.append(CreatorSellEvent(tx_digest=digest, seller=seller,
                                          token_address=token_address))
    return found


@dataclass
class WatermarkDigest:
    creation: Optional[str] = None
    sell: Optional[str] = None


class EventWatcher:
    """
    Polls the launchpad and drives the decision engine and executor.

    All dedup state (watermarks, the engine's attempt set) belongs to this
    instance, so two watchers never share anything.
    """

    def __init__(self, gateway, engine: AutoBuyEngine, executor: OrderExecutor,
                 catalog: TokenCatalog, launchpad: LaunchpadConfig,
                 config: Optional[WatcherConfig] = None,
                 dispatcher: Optional[BoundedDispatcher] = None,
                 on_listing: Optional[Callable[[Token, TokenMetrics, bool], None]] = None):
        self.gateway = gateway
        self.engine = engine
        self.executor = executor
        self.catalog = catalog
        self.launchpad = launchpad
        self.config = config or WatcherConfig()
        self.dispatcher = dispatcher or BoundedDispatcher(self.config.max_in_flight, "launches")
        # Creator-sell dumps, uncapped
        self.sell_tasks = DetachedTasks("creator-sells")
        self.on_listing = on_listing
        self.watermark = WatermarkDigest()
        self.running = False

    # --- creation stream -----------------------------------------------------

    async def poll_creation_events(self) -> list[LaunchEvent]:
        """One poll. Returns the launches handed off downstream."""
        events = await self.gateway.query_events(
            self.launchpad.created_event_type,
            limit=self.config.creation_batch_size,
            descending=True,
        )
        fresh = []
        for event in events:  # newest first
            if event.tx_digest == self.watermark.creation:
                break
            fresh.append(event)
        if not fresh:
            return []

        self.watermark.creation = events[0].tx_digest

        dispatched = []
        for event in fresh:
            launch = LaunchEvent.from_ledger_event(event)
            if launch is None:
                continue
            logger.info("New token detected: %s (%s) %s",
                        launch.name, launch.symbol, launch.token_address)
            if self.dispatcher.submit(self.handle_launch(launch), label=f"launch {launch.symbol}"):
                dispatched.append(launch)
        return dispatched

    async def _creator_balance(self, creator: str) -> float:
        try:
            return await self.gateway.get_balance(creator, SUI_COIN_TYPE) / MIST_PER_SUI
        except Exception as e:
            logger.error("Error getting creator balance for %s: %s", creator, e)
            return 0.0

    async def _creator_supply(self, creator: str, token_address: str) -> float:
        try:
            held = await self.gateway.get_balance(creator, token_address)
        except Exception as e:
            logger.error("Error getting creator supply for %s: %s", creator, e)
            return 0.0
        return held * 100 / self.launchpad.token_supply

    async def collect_metrics(self, launch: LaunchEvent) -> TokenMetrics:
        creator = launch.creator_address
        if creator.startswith("0x"):
            balance, supply = await asyncio.gather(
                self._creator_balance(creator),
                self._creator_supply(creator, launch.token_address),
            )
            previous = self.catalog.count_by_creator(creator)
        else:
            # Unknown creator: nothing to look up, and "Unknown Creator" rows aren't one person
            balance, supply, previous = 0.0, 0.0, 0
        return TokenMetrics(
            token_address=launch.token_address,
            creator_address=creator,
            previous_launches=previous,
            creator_balance=balance,
            creator_supply=supply,
            description=launch.description,
            twitter=launch.twitter,
            telegram=launch.telegram,
            website=launch.website,
        )

    async def handle_launch(self, launch: LaunchEvent):
        if self.catalog.get_by_address(launch.token_address):
            return

        metrics = await self.collect_metrics(launch)
        token = Token(
            listing_id=generate_listing_id(),
            token_address=launch.token_address,
            name=launch.name,
            symbol=launch.symbol,
            pool_id=launch.pool_id,
            creator_address=launch.creator_address,
            description=launch.description,
            uri=launch.uri,
            twitter=launch.twitter,
            telegram=launch.telegram,
            website=launch.website,
        )
        # Stored before buying: the executor flips the ownership flag later
        self.catalog.upsert(token)

        bought = False
        if self.engine.evaluate(metrics):
            logger.info("Auto-buy triggered for %s", launch.name)
            try:
                result = await self.executor.buy(launch.token_address,
                                                 self.engine.settings.buy_amount, 0)
                bought = result.success
                logger.info("Auto-buy %s for %s", "dispatched" if bought else "failed", launch.name)
            except Exception as e:
                logger.error("Auto-buy error for %s: %s", launch.name, e)

        if self.on_listing is not None:
            try:
                self.on_listing(token, metrics, bought)
            except Exception as e:
                logger.error("Listing callback failed for %s: %s", token.listing_id, e)

    # --- creator sell stream -------------------------------------------------

    async def poll_sell_events(self) -> list[CreatorSellEvent]:
        txs = await self.gateway.query_function_transactions(
            self.launchpad.sell_function, last=self.config.sell_batch_size
        )
        if not txs:
            return []

        digests = [tx.get("digest") for tx in txs]  # oldest first
        start = 0
        if self.watermark.sell in digests:
            start = digests.index(self.watermark.sell) + 1
        self.watermark.sell = digests[-1]

        handled = []
        for tx in txs[start:]:
            for sell in parse_sell_transaction(tx):
                if self.handle_creator_sell(sell):
                    handled.append(sell)
        return handled

    def owned_token_by_creator(self, creator: str) -> Optional[Token]:
        creator = creator.lower()
        return next(
            (t for t in self.catalog.list_owned() if t.creator_address.lower() == creator),
            None,
        )

    def handle_creator_sell(self, sell: CreatorSellEvent) -> bool:
        """
        Dump a held token whose creator is the seller. True if a sell was fired.

        The sell itself runs detached. Ownership is cleared right away so a
        second sell by the same creator in the same batch doesn't fire again.
        """
        match = self.owned_token_by_creator(sell.seller)
        if match is None:
            return False

        logger.warning("CREATOR SELL DETECTED: %s (%s) by %s",
                       match.name, match.symbol, match.creator_address)
        self.catalog.set_ownership(match.token_address, False)
        self.sell_tasks.spawn(self.dump_position(match), label=f"dump {match.symbol}")
        return True

    async def dump_position(self, token: Token) -> bool:
        result = await self.executor.sell(token.token_address, 100)
        if result.success:
            logger.info("Emergency sell of %s initiated in %.1fms",
                        token.symbol, result.elapsed_ms)
        else:
            logger.error("Emergency sell of %s failed: %s", token.symbol, result.error)
        return result.success

    async def drain(self, timeout: Optional[float] = None):
        """Wait for in-flight launch handlers and creator-sell dumps."""
        await asyncio.gather(self.dispatcher.drain(timeout), self.sell_tasks.drain(timeout))

    # --- loops ---------------------------------------------------------------

    async def run_creation_loop(self, max_iterations: Optional[int] = None):
        self.running = True
        iterations = 0
        while self.running and (max_iterations is None or iterations < max_iterations):
            iterations += 1
            try:
                await self.poll_creation_events()
            except Exception as e:
                logger.error("Error polling creation events: %s", e)
                await asyncio.sleep(self.config.error_backoff)
                continue
            await asyncio.sleep(0)

    async def run_sell_loop(self, max_iterations: Optional[int] = None):
        self.running = True
        iterations = 0
        while self.running and (max_iterations is None or iterations < max_iterations):
            iterations += 1
            try:
                await self.poll_sell_events()
            except Exception as e:
                logger.error("Error watching for sell events: %s", e)
            await asyncio.sleep(self.config.sell_poll_delay)

    async def run(self):
        logger.info("Starting token and creator-sell watchers")
        await asyncio.gather(self.run_creation_loop(), self.run_sell_loop())

    def stop(self):
        self.running = False
