"""
Order Executor - where decisions become transactions.

Handles:
- Splitting a buy across the wallet pool with randomized shares
- Building turbospump buy/sell programmable transactions per wallet
- Firing them without waiting for the ledger (submit and detach)
- Ownership bookkeeping once orders are out

NOTE: "success" means every submission was dispatched. Whether a given
wallet's transaction lands is only visible in the logs.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from launch_sniper.config import MIST_PER_SUI, SUI_COIN_TYPE, GasConfig, LaunchpadConfig, WatcherConfig
from launch_sniper.ledger.gateway import CoinObject
from launch_sniper.ledger.keys import Wallet
from launch_sniper.ledger.transactions import ProgrammableTransaction, select_gas_payment
from launch_sniper.tasks import DetachedTasks
from launch_sniper.trading.catalog import TokenCatalog

logger = logging.getLogger(__name__)

SHARE_DEVIATION = Decimal("0.2")  # each wallet buys within +-20% of an even share
CENT = Decimal("0.01")


@dataclass
class ExecutionResult:
    success: bool
    wallets: list[str] = field(default_factory=list)  # addresses with a dispatched submission
    amounts: list[int] = field(default_factory=list)  # smallest unit, same order as wallets
    error: Optional[str] = None
    elapsed_ms: float = 0.0


def split_amount(total, wallet_count: int, rng: random.Random = random) -> list[Decimal]:
    """
    Split ``total`` into ``wallet_count`` randomized shares.

    Each share is the even share scaled by a uniform factor in [0.8, 1.2] and
    rounded to cents. The first wallet absorbs the rounding residual, so the
    shares always sum to exactly ``total``.
    """
    if wallet_count < 1:
        raise ValueError("need at least one wallet")
    total = Decimal(str(total))
    base = total / wallet_count
    shares = []
    for _ in range(wallet_count):
        factor = (1 - SHARE_DEVIATION) + Decimal(str(rng.random())) * (2 * SHARE_DEVIATION)
        shares.append((base * factor).quantize(CENT, rounding=ROUND_HALF_UP))
    shares[0] += total - sum(shares)
    return shares


def sui_to_mist(amount) -> int:
    return int(Decimal(str(amount)) * MIST_PER_SUI)


def plan_sell_coins(coins: list[CoinObject], amount: int) -> tuple[CoinObject, list[CoinObject]]:
    """
    Pick the coin to split ``amount`` from, and the coins to merge into it first.

    Coins are ranked largest first. If the largest covers the amount it is
    used alone; otherwise every other coin is merged into it.
    """
    if not coins:
        raise ValueError("no coins to sell from")
    ranked = sorted(coins, key=lambda c: c.balance, reverse=True)
    if ranked[0].balance >= amount:
        return ranked[0], []
    return ranked[0], ranked[1:]


def allocate_sell_amounts(balances: list[int], percentage: int) -> list[int]:
    """
    Spread the target (total * pct // 100) over wallets in pool order.

    Each wallet sells min(balance, what is still left to sell).
    """
    remaining = sum(balances) * percentage // 100
    amounts = []
    for balance in balances:
        amount = min(balance, remaining) if balance > 0 else 0
        remaining -= amount
        amounts.append(amount)
    return amounts


class OrderExecutor:
    """
    Fans buy and sell orders out over the wallet pool.

    Every per-wallet submission is its own detached task: a wallet that is
    out of gas or gets rejected never holds up or fails its siblings.
    """

    def __init__(self, gateway, wallets: list[Wallet], launchpad: LaunchpadConfig,
                 gas: GasConfig, watcher: Optional[WatcherConfig] = None,
                 catalog: Optional[TokenCatalog] = None,
                 tasks: Optional[DetachedTasks] = None,
                 rng: random.Random = random):
        self.gateway = gateway
        self.wallets = wallets
        self.launchpad = launchpad
        self.gas = gas
        self.watcher = watcher or WatcherConfig()
        self.catalog = catalog
        self.tasks = tasks or DetachedTasks("orders")
        self.rng = rng

    async def drain(self, timeout: Optional[float] = None):
        """Wait for dispatched submissions. The agent never does; the CLI does before exiting."""
        await self.tasks.drain(timeout)

    # --- buy -----------------------------------------------------------------

    async def buy(self, token_address: str, total_amount: float,
                  min_output_per_wallet: int = 0) -> ExecutionResult:
        """Buy ``total_amount`` SUI worth of ``token_address`` across all wallets."""
        start = time.perf_counter()
        if not self.wallets:
            return ExecutionResult(success=False, error="No wallets configured")
        try:
            shares = split_amount(total_amount, len(self.wallets), self.rng)
            result = ExecutionResult(success=True)
            for wallet, share in zip(self.wallets, shares):
                amount = sui_to_mist(share)
                if amount <= 0:
                    logger.warning("Skipping %s: non-positive share %s", wallet.address, share)
                    continue
                self.tasks.spawn(
                    self._submit_buy(wallet, token_address, amount, min_output_per_wallet),
                    label=f"buy {token_address} from {wallet.address}",
                )
                result.wallets.append(wallet.address)
                result.amounts.append(amount)
        except Exception as e:
            logger.error("Buy failed for %s: %s", token_address, e)
            return ExecutionResult(success=False, error=str(e),
                                   elapsed_ms=(time.perf_counter() - start) * 1000)

        result.elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("Buy txs fired for %s: %d wallets in %.1fms",
                    token_address, len(result.wallets), result.elapsed_ms)

        if self.catalog is not None and result.wallets:
            self.tasks.spawn(self._mark_owned(token_address), label=f"mark {token_address} owned")
        return result

    def build_buy_transaction(self, wallet: Wallet, token_type: str, amount: int,
                              min_output: int, gas_coins: list[CoinObject]) -> bytes:
        lp = self.launchpad
        tx = ProgrammableTransaction()
        [coin] = tx.split_coins(tx.gas, [tx.pure_u64(amount)])
        tx.move_call(
            lp.target("buy"),
            [token_type],
            [
                tx.shared_object(lp.config_object_id, lp.config_initial_shared_version, True),
                coin,
                tx.pure_u64(amount),
                tx.pure_u64(min_output),
                tx.pure_bool(True),
                tx.shared_object(lp.clock_object_id, lp.clock_initial_shared_version, False),
            ],
        )
        payment = select_gas_payment(gas_coins, amount + self.gas.buy_budget)
        return tx.build(wallet.address, payment, self.gas.buy_price, self.gas.buy_budget)

    async def _submit_buy(self, wallet: Wallet, token_type: str, amount: int, min_output: int):
        gas_coins = await self.gateway.get_coins(wallet.address, SUI_COIN_TYPE)
        tx_bytes = self.build_buy_transaction(wallet, token_type, amount, min_output, gas_coins)
        await self.gateway.execute(tx_bytes, [wallet.sign_transaction(tx_bytes)])

    async def _mark_owned(self, token_address: str):
        self.catalog.set_ownership(token_address, True)

    # --- sell ----------------------------------------------------------------

    async def sell(self, token_address: str, percentage: int) -> ExecutionResult:
        """Sell ``percentage`` of everything the pool holds of ``token_address``."""
        start = time.perf_counter()
        if not 1 <= percentage <= 100:
            return ExecutionResult(success=False, error="Percentage must be between 1 and 100")
        try:
            balances = await asyncio.gather(
                *(self.gateway.get_balance(w.address, token_address) for w in self.wallets)
            )
            amounts = allocate_sell_amounts(list(balances), percentage)
            result = ExecutionResult(success=True)
            for wallet, amount in zip(self.wallets, amounts):
                if amount <= 0:
                    continue
                self.tasks.spawn(
                    self._submit_sell(wallet, token_address, amount),
                    label=f"sell {token_address} from {wallet.address}",
                )
                result.wallets.append(wallet.address)
                result.amounts.append(amount)
        except Exception as e:
            logger.error("Sell failed for %s: %s", token_address, e)
            return ExecutionResult(success=False, error=str(e),
                                   elapsed_ms=(time.perf_counter() - start) * 1000)

        result.elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("Sell txs fired for %s (%d%%): %d wallets in %.1fms",
                    token_address, percentage, len(result.wallets), result.elapsed_ms)

        if self.catalog is not None:
            self.tasks.spawn(self._check_remaining(token_address),
                             label=f"ownership check {token_address}")
        return result

    def build_sell_transaction(self, wallet: Wallet, token_type: str, amount: int,
                               coins: list[CoinObject], gas_coins: list[CoinObject],
                               gas_price: int) -> bytes:
        lp = self.launchpad
        primary, merges = plan_sell_coins(coins, amount)
        tx = ProgrammableTransaction()
        coin = tx.owned_object(primary.ref)
        if merges:
            tx.merge_coins(coin, [tx.owned_object(c.ref) for c in merges])
        [to_sell] = tx.split_coins(coin, [tx.pure_u64(amount)])
        tx.move_call(
            lp.target("sell"),
            [token_type],
            [
                tx.shared_object(lp.config_object_id, lp.config_initial_shared_version, True),
                to_sell,
                tx.pure_u64(amount),
                tx.pure_u64(0),
                tx.pure_bool(True),
                tx.shared_object(lp.clock_object_id, lp.clock_initial_shared_version, False),
            ],
        )
        payment = select_gas_payment(gas_coins, self.gas.sell_budget)
        return tx.build(wallet.address, payment, gas_price, self.gas.sell_budget)

    async def _submit_sell(self, wallet: Wallet, token_type: str, amount: int):
        coins = await self.gateway.get_coins(wallet.address, token_type)
        if not coins:
            return
        available = sum(c.balance for c in coins)
        if available < amount:
            logger.warning("%s: only %d of %d enumerable, selling that", wallet.address,
                           available, amount)
            amount = available
        gas_coins = await self.gateway.get_coins(wallet.address, SUI_COIN_TYPE)
        gas_price = self.gas.sell_price
        if gas_price is None:
            gas_price = await self.gateway.get_reference_gas_price()
        tx_bytes = self.build_sell_transaction(wallet, token_type, amount, coins,
                                               gas_coins, gas_price)
        await self.gateway.execute(tx_bytes, [wallet.sign_transaction(tx_bytes)])

    async def _check_remaining(self, token_address: str):
        await asyncio.sleep(self.watcher.ownership_check_delay)
        remaining = await self.owned_percentage(token_address)
        if remaining < self.watcher.dust_threshold_pct:
            self.catalog.set_ownership(token_address, False)
            logger.info("Cleared ownership of %s (%.2f%% left)", token_address, remaining)

    # --- balances ------------------------------------------------------------

    async def _balances_or_zero(self, coin_type: str) -> list[int]:
        async def one(wallet: Wallet) -> int:
            try:
                return await self.gateway.get_balance(wallet.address, coin_type)
            except Exception as e:
                logger.warning("Skipping balance of %s: %s", wallet.address, e)
                return 0
        return list(await asyncio.gather(*(one(w) for w in self.wallets)))

    async def owned_percentage(self, token_address: str) -> float:
        """Share of the token's total supply held across the pool, in %, two decimals."""
        total = sum(await self._balances_or_zero(token_address))
        scaled = total * MIST_PER_SUI * 100 // self.launchpad.token_supply
        return round(scaled / MIST_PER_SUI, 2)

    async def wallet_balances(self) -> list[int]:
        """SUI balance of each wallet in MIST."""
        return await self._balances_or_zero(SUI_COIN_TYPE)
