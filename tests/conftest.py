"""Shared fakes: an in-memory ledger gateway and deterministic wallets."""

import math

import base58
import pytest

from launch_sniper.config import SUI_COIN_TYPE, LaunchpadConfig, WatcherConfig
from launch_sniper.ledger.gateway import CoinObject, GatewayError, LatencyReport, LedgerEvent
from launch_sniper.ledger.keys import Wallet
from launch_sniper.ledger.transactions import ObjectRef
from launch_sniper.trading.catalog import TokenCatalog

TOKEN_TYPE = "0xabc::meme::MEME"


def make_coin(object_id: str, balance: int, coin_type: str = SUI_COIN_TYPE,
              version: int = 1) -> CoinObject:
    return CoinObject(
        coin_type=coin_type,
        balance=balance,
        ref=ObjectRef(object_id=object_id, version=version,
                      digest=base58.b58encode(bytes([version]) * 32).decode()),
    )


def make_wallets(n: int) -> list[Wallet]:
    return [Wallet.from_seed(bytes([i + 1]) * 32) for i in range(n)]


def make_event(digest: str, **fields) -> LedgerEvent:
    data = {
        "name": "Meme",
        "symbol": "MEME",
        "token_address": TOKEN_TYPE,
        "created_by": "0xc0ffee",
        "pool_id": "0x99",
        "description": "a fun coin",
        "twitter": "https://twitter.com/cooltoken",
        "telegram": "https://t.me/cooltoken",
        "website": "https://cooltoken.io",
    }
    data.update(fields)
    return LedgerEvent(tx_digest=digest, event_seq=0, event_type="CreatedEvent",
                       sender="0xc0ffee", parsed_json=data)


def make_sell_tx(digest: str, seller: str, token: str = TOKEN_TYPE, is_buy: bool = False) -> dict:
    return {
        "digest": digest,
        "sender": {"address": seller},
        "effects": {"events": {"nodes": [{"contents": {"data": {"Struct": [
            {"name": "is_buy", "value": {"Bool": is_buy}},
            {"name": "token_address", "value": {"String": token}},
        ]}}}]}},
    }


class FakeGateway:
    def __init__(self):
        self.balances: dict[tuple[str, str], int] = {}
        self.coins: dict[tuple[str, str], list[CoinObject]] = {}
        self.events: list[LedgerEvent] = []  # newest first
        self.sell_txs: list[dict] = []  # oldest first
        self.executed: list[tuple[bytes, list[str]]] = []
        self.failing_owners: set[str] = set()
        self.failing_senders: set[str] = set()
        self.event_errors = 0
        self.reference_gas_price = 750
        self.latencies = [12.0, 15.0, 18.0]
        self.closed = False

    async def get_balance(self, owner, coin_type=SUI_COIN_TYPE):
        if owner in self.failing_owners:
            raise GatewayError(f"balance lookup failed for {owner}")
        return self.balances.get((owner, coin_type), 0)

    async def get_coins(self, owner, coin_type=SUI_COIN_TYPE):
        return list(self.coins.get((owner, coin_type), []))

    async def query_events(self, move_event_type, limit=1, descending=True):
        if self.event_errors:
            self.event_errors -= 1
            raise GatewayError("event query failed")
        return self.events[:limit]

    async def query_function_transactions(self, function, last=5):
        return self.sell_txs[-last:]

    async def get_reference_gas_price(self):
        return self.reference_gas_price

    async def measure_latency(self, attempts=3):
        return LatencyReport(latencies_ms=list(self.latencies), attempts=attempts)

    async def execute(self, tx_bytes, signatures):
        self.executed.append((tx_bytes, signatures))
        for sender in self.failing_senders:
            if bytes.fromhex(sender[2:]) in tx_bytes:
                raise GatewayError("InsufficientCoinBalance")
        return {"digest": f"tx{len(self.executed)}"}

    async def close(self):
        self.closed = True


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def catalog():
    c = TokenCatalog(":memory:")
    c.initialize()
    yield c
    c.close()


@pytest.fixture
def launchpad():
    return LaunchpadConfig()


@pytest.fixture
def fast_watcher_config():
    return WatcherConfig(sell_poll_delay=0, error_backoff=0, ownership_check_delay=0)


INF = math.inf
