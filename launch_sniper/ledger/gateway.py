"""
Sui ledger gateway.

Thin async client over the fullnode JSON-RPC API (balances, coins, events,
transaction submission) and the public GraphQL endpoint (the one place that
can filter transactions by called function, which is how creator sells are
spotted).
"""

import asyncio
import base64
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Optional

import aiohttp

from launch_sniper.config import SUI_COIN_TYPE
from launch_sniper.ledger.transactions import ObjectRef

logger = logging.getLogger(__name__)

SELL_TRANSACTIONS_QUERY = """
query ($function: String!, $last: Int!) {
  transactionBlocks(filter: {function: $function}, last: $last) {
    nodes {
      digest
      sender { address }
      effects { events { nodes { contents { data } } } }
    }
  }
}
"""


class GatewayError(Exception):
    """Any failure talking to the ledger: transport, HTTP status or RPC error."""


@dataclass
class CoinObject:
    coin_type: str
    balance: int
    ref: ObjectRef

    @property
    def object_id(self) -> str:
        return self.ref.object_id


@dataclass
class LedgerEvent:
    tx_digest: str
    event_seq: int
    event_type: str
    sender: str
    parsed_json: dict = field(default_factory=dict)
    timestamp_ms: Optional[int] = None


@dataclass
class LatencyReport:
    latencies_ms: list[float]
    attempts: int

    @property
    def successes(self) -> int:
        return sum(1 for l in self.latencies_ms if l != math.inf)

    @property
    def average_ms(self) -> float:
        valid = [l for l in self.latencies_ms if l != math.inf]
        return sum(valid) / len(valid) if valid else math.inf


def parse_coin(data: dict) -> CoinObject:
    return CoinObject(
        coin_type=data.get("coinType", ""),
        balance=int(data["balance"]),
        ref=ObjectRef(
            object_id=data["coinObjectId"],
            version=int(data["version"]),
            digest=data["digest"],
        ),
    )


def parse_event(data: dict) -> LedgerEvent:
    event_id = data.get("id", {})
    ts = data.get("timestampMs")
    return LedgerEvent(
        tx_digest=event_id.get("txDigest", ""),
        event_seq=int(event_id.get("eventSeq", 0)),
        event_type=data.get("type", ""),
        sender=data.get("sender", ""),
        parsed_json=data.get("parsedJson") or {},
        timestamp_ms=int(ts) if ts is not None else None,
    )


class SuiGateway:
    """
    Async Sui client. One aiohttp session for the lifetime of the agent.

    Usage:
        async with SuiGateway(rpc_url, graphql_url) as gateway:
            balance = await gateway.get_balance(address)
    """

    def __init__(self, rpc_url: str, graphql_url: str, timeout: float = 30.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.rpc_url = rpc_url
        self.graphql_url = graphql_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._request_id = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _post(self, url: str, payload: dict) -> dict:
        session = self._get_session()
        try:
            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise GatewayError(f"HTTP {resp.status} from {url}: {body[:200]}")
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise GatewayError(f"request to {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise GatewayError(f"request to {url} timed out") from e

    async def rpc(self, method: str, params: list):
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        data = await self._post(self.rpc_url, payload)
        if data.get("error"):
            raise GatewayError(f"{method}: {data['error'].get('message', data['error'])}")
        return data.get("result")

    # --- reads ---------------------------------------------------------------

    async def get_balance(self, owner: str, coin_type: str = SUI_COIN_TYPE) -> int:
        """Total balance in the coin's smallest unit (MIST for SUI)."""
        result = await self.rpc("suix_getBalance", [owner, coin_type])
        return int(result["totalBalance"])

    async def get_coins(self, owner: str, coin_type: str = SUI_COIN_TYPE,
                        max_pages: int = 10) -> list[CoinObject]:
        """Every coin object of ``coin_type`` held by ``owner``."""
        coins: list[CoinObject] = []
        cursor = None
        for _ in range(max_pages):
            page = await self.rpc("suix_getCoins", [owner, coin_type, cursor, None])
            coins.extend(parse_coin(c) for c in page.get("data", []))
            if not page.get("hasNextPage"):
                return coins
            cursor = page.get("nextCursor")
        logger.warning("%s holds more than %d pages of %s coins, using the first %d",
                       owner, max_pages, coin_type, len(coins))
        return coins

    async def query_events(self, move_event_type: str, limit: int = 1,
                           descending: bool = True) -> list[LedgerEvent]:
        result = await self.rpc(
            "suix_queryEvents",
            [{"MoveEventType": move_event_type}, None, limit, descending],
        )
        return [parse_event(e) for e in result.get("data", [])]

    async def query_function_transactions(self, function: str, last: int = 5) -> list[dict]:
        """Most recent transactions calling ``function``, oldest first."""
        payload = {"query": SELL_TRANSACTIONS_QUERY,
                   "variables": {"function": function, "last": last}}
        data = await self._post(self.graphql_url, payload)
        if data.get("errors"):
            raise GatewayError(f"graphql: {data['errors'][0].get('message')}")
        blocks = (data.get("data") or {}).get("transactionBlocks") or {}
        return blocks.get("nodes") or []

    async def get_reference_gas_price(self) -> int:
        return int(await self.rpc("suix_getReferenceGasPrice", []))

    async def get_chain_identifier(self) -> str:
        return await self.rpc("sui_getChainIdentifier", [])

    async def measure_latency(self, attempts: int = 3) -> LatencyReport:
        """Time a cheap checkpoint lookup a few times. Failed attempts count as inf."""
        latencies = []
        for i in range(1, attempts + 1):
            start = time.perf_counter()
            try:
                await self.rpc("sui_getCheckpoint", ["0"])
            except GatewayError as e:
                logger.warning("Health check attempt %d failed: %s", i, e)
                latencies.append(math.inf)
                continue
            latencies.append((time.perf_counter() - start) * 1000)
        return LatencyReport(latencies_ms=latencies, attempts=attempts)

    # --- writes --------------------------------------------------------------

    async def execute(self, tx_bytes: bytes, signatures: list[str]) -> dict:
        """Submit a signed transaction. We ask for local execution but never look at effects."""
        options = {
            "showEffects": False,
            "showEvents": False,
            "showInput": False,
            "showObjectChanges": False,
            "showBalanceChanges": False,
        }
        return await self.rpc(
            "sui_executeTransactionBlock",
            [base64.b64encode(tx_bytes).decode(), signatures, options, "WaitForLocalExecution"],
        )
