"""
Order executor tests: amount splitting, coin planning, fan-out and bookkeeping.
"""
import asyncio
import base64
import random
from decimal import Decimal

import pytest
from nacl.signing import VerifyKey

from conftest import TOKEN_TYPE, make_coin, make_wallets
from launch_sniper.config import SUI_COIN_TYPE, GasConfig, WatcherConfig
from launch_sniper.ledger.keys import TRANSACTION_INTENT, blake2b_256
from launch_sniper.tasks import DetachedTasks
from launch_sniper.trading.catalog import Token
from launch_sniper.trading.executor import (
    OrderExecutor,
    allocate_sell_amounts,
    plan_sell_coins,
    split_amount,
    sui_to_mist,
)

GAS = GasConfig(buy_budget=20_000_000, buy_price=800, sell_budget=50_000_000, sell_price=None)


def fund(gateway, wallets, sui=10):
    for i, w in enumerate(wallets):
        gateway.coins[(w.address, SUI_COIN_TYPE)] = [make_coin(f"0x{i + 1:02x}aa", sui * 10 ** 9)]
        gateway.balances[(w.address, SUI_COIN_TYPE)] = sui * 10 ** 9


def hold(gateway, wallet, amount, coin_id="0xfeed"):
    gateway.balances[(wallet.address, TOKEN_TYPE)] = amount
    gateway.coins[(wallet.address, TOKEN_TYPE)] = [make_coin(coin_id, amount, TOKEN_TYPE)]


def executor(gateway, launchpad, wallets, catalog=None):
    return OrderExecutor(
        gateway, wallets, launchpad, GAS,
        watcher=WatcherConfig(ownership_check_delay=0),
        catalog=catalog,
        tasks=DetachedTasks("test-orders"),
        rng=random.Random(7),
    )


def verify_signature(tx_bytes: bytes, serialized: str, expected_address: str):
    raw = base64.b64decode(serialized)
    assert raw[0] == 0x00
    signature, public_key = raw[1:65], raw[65:]
    VerifyKey(public_key).verify(blake2b_256(TRANSACTION_INTENT + tx_bytes), signature)
    assert "0x" + blake2b_256(b"\x00" + public_key).hex() == expected_address


class TestSplitAmount:
    """split_amount()"""

    @pytest.mark.parametrize("seed", range(20))
    def test_sums_exactly(self, seed):
        shares = split_amount(100, 4, random.Random(seed))
        assert len(shares) == 4
        assert sum(shares) == Decimal("100")

    def test_odd_total(self):
        shares = split_amount(1.37, 3, random.Random(1))
        assert sum(shares) == Decimal("1.37")

    def test_shares_stay_near_even_split(self):
        shares = split_amount(100, 4, random.Random(3))
        for share in shares[1:]:
            assert Decimal("19.99") <= share <= Decimal("30.01")

    def test_single_wallet_gets_everything(self):
        assert split_amount(5, 1, random.Random(0)) == [Decimal("5")]

    def test_no_wallets(self):
        with pytest.raises(ValueError):
            split_amount(1, 0)

    def test_sui_to_mist(self):
        assert sui_to_mist(Decimal("1.25")) == 1_250_000_000
        assert sui_to_mist(0.1) == 100_000_000


class TestPlanSellCoins:
    """plan_sell_coins()"""

    def test_merges_all_when_largest_is_short(self):
        coins = [make_coin("0x1", 30), make_coin("0x2", 50), make_coin("0x3", 20)]
        primary, merges = plan_sell_coins(coins, 70)
        assert primary.balance == 50
        assert sorted(c.balance for c in merges) == [20, 30]

    def test_largest_alone_when_enough(self):
        coins = [make_coin("0x1", 30), make_coin("0x2", 50)]
        primary, merges = plan_sell_coins(coins, 40)
        assert primary.object_id == "0x2"
        assert merges == []

    def test_no_coins(self):
        with pytest.raises(ValueError):
            plan_sell_coins([], 1)


class TestAllocateSellAmounts:
    """allocate_sell_amounts()"""

    def test_half_of_two_equal_wallets(self):
        amounts = allocate_sell_amounts([100, 100], 50)
        assert amounts == [100, 0]
        assert sum(amounts) == 100

    def test_everything(self):
        assert allocate_sell_amounts([30, 0, 50], 100) == [30, 0, 50]

    def test_never_exceeds_target_or_balance(self):
        balances = [7, 13, 1, 40]
        amounts = allocate_sell_amounts(balances, 33)
        assert sum(amounts) == sum(balances) * 33 // 100
        assert all(a <= b for a, b in zip(amounts, balances))


class TestBuy:
    """OrderExecutor.buy()"""

    def test_fans_out_to_every_wallet(self, gateway, launchpad):
        wallets = make_wallets(4)
        fund(gateway, wallets)
        ex = executor(gateway, launchpad, wallets)

        async def go():
            result = await ex.buy(TOKEN_TYPE, 1.0)
            await ex.drain()
            return result

        result = asyncio.run(go())
        assert result.success
        assert result.wallets == [w.address for w in wallets]
        assert sum(result.amounts) == 10 ** 9
        assert len(gateway.executed) == 4
        for (tx_bytes, [sig]), wallet in zip(gateway.executed, wallets):
            verify_signature(tx_bytes, sig, wallet.address)

    def test_returns_before_ledger_answers(self, gateway, launchpad):
        wallets = make_wallets(2)
        fund(gateway, wallets)
        ex = executor(gateway, launchpad, wallets)

        async def go():
            result = await ex.buy(TOKEN_TYPE, 1.0)
            pending = len(ex.tasks)
            await ex.drain()
            return result, pending

        result, pending = asyncio.run(go())
        assert result.success
        assert pending == 2
        assert len(gateway.executed) == 2

    def test_one_failing_wallet_does_not_affect_others(self, gateway, launchpad):
        wallets = make_wallets(3)
        fund(gateway, wallets)
        gateway.failing_senders.add(wallets[1].address)
        ex = executor(gateway, launchpad, wallets)

        async def go():
            result = await ex.buy(TOKEN_TYPE, 3.0)
            await ex.drain()
            return result

        result = asyncio.run(go())
        assert result.success
        assert len(gateway.executed) == 3
        assert ex.tasks.failures == 1

    def test_no_wallets(self, gateway, launchpad):
        ex = executor(gateway, launchpad, [])
        result = asyncio.run(ex.buy(TOKEN_TYPE, 1.0))
        assert not result.success
        assert result.error == "No wallets configured"

    def test_marks_token_owned(self, gateway, launchpad, catalog):
        wallets = make_wallets(1)
        fund(gateway, wallets)
        catalog.upsert(Token(listing_id="ABC123", token_address=TOKEN_TYPE, name="Meme", symbol="MEME"))
        ex = executor(gateway, launchpad, wallets, catalog=catalog)

        async def go():
            await ex.buy(TOKEN_TYPE, 1.0)
            await ex.drain()

        asyncio.run(go())
        assert catalog.get("ABC123").owned_token is True

    def test_buy_transaction_shape(self, launchpad):
        [wallet] = make_wallets(1)
        ex = executor(None, launchpad, [wallet])
        gas_coin = make_coin("0x77", 5 * 10 ** 9)
        tx = ex.build_buy_transaction(wallet, TOKEN_TYPE, 10 ** 9, 0, [gas_coin])
        assert tx[:2] == b"\x00\x00"
        assert gas_coin.ref.encode() in tx
        assert b"turbospump" in tx and b"buy" in tx
        assert tx.endswith((800).to_bytes(8, "little") + (20_000_000).to_bytes(8, "little") + b"\x00")


class TestSell:
    """OrderExecutor.sell()"""

    def test_rejects_bad_percentage(self, gateway, launchpad):
        ex = executor(gateway, launchpad, make_wallets(1))
        for pct in (0, 101):
            result = asyncio.run(ex.sell(TOKEN_TYPE, pct))
            assert not result.success
            assert "between 1 and 100" in result.error

    def test_only_wallets_with_something_to_sell(self, gateway, launchpad):
        wallets = make_wallets(3)
        fund(gateway, wallets)
        hold(gateway, wallets[0], 400, "0xf0")
        hold(gateway, wallets[2], 600, "0xf2")
        ex = executor(gateway, launchpad, wallets)

        async def go():
            result = await ex.sell(TOKEN_TYPE, 100)
            await ex.drain()
            return result

        result = asyncio.run(go())
        assert result.success
        assert result.wallets == [wallets[0].address, wallets[2].address]
        assert result.amounts == [400, 600]
        assert len(gateway.executed) == 2
        # Sell gas price defaults to the reference price
        tx_bytes = gateway.executed[0][0]
        assert tx_bytes.endswith((750).to_bytes(8, "little") + (50_000_000).to_bytes(8, "little") + b"\x00")

    def test_nothing_held(self, gateway, launchpad):
        ex = executor(gateway, launchpad, make_wallets(2))

        async def go():
            result = await ex.sell(TOKEN_TYPE, 50)
            await ex.drain()
            return result

        result = asyncio.run(go())
        assert result.success
        assert result.wallets == []
        assert gateway.executed == []

    def test_balance_lookup_failure(self, gateway, launchpad):
        wallets = make_wallets(2)
        gateway.failing_owners.add(wallets[1].address)
        ex = executor(gateway, launchpad, wallets)
        result = asyncio.run(ex.sell(TOKEN_TYPE, 50))
        assert not result.success
        assert "balance lookup failed" in result.error

    def test_sell_capped_to_enumerated_coins(self, gateway, launchpad):
        [wallet] = make_wallets(1)
        fund(gateway, [wallet])
        gateway.balances[(wallet.address, TOKEN_TYPE)] = 100
        gateway.coins[(wallet.address, TOKEN_TYPE)] = [make_coin("0xf1", 40, TOKEN_TYPE),
                                                        make_coin("0xf2", 20, TOKEN_TYPE)]
        ex = executor(gateway, launchpad, [wallet])

        async def go():
            await ex.sell(TOKEN_TYPE, 100)
            await ex.drain()

        asyncio.run(go())
        [(tx_bytes, _)] = gateway.executed
        assert b"\x00\x08" + (60).to_bytes(8, "little") in tx_bytes
        assert b"\x00\x08" + (100).to_bytes(8, "little") not in tx_bytes

    def test_sell_transaction_merges_coins(self, launchpad):
        [wallet] = make_wallets(1)
        ex = executor(None, launchpad, [wallet])
        coins = [make_coin("0x1", 30, TOKEN_TYPE, 1), make_coin("0x2", 50, TOKEN_TYPE, 2),
                 make_coin("0x3", 20, TOKEN_TYPE, 3)]
        gas = [make_coin("0x9", 10 ** 9)]
        tx = ex.build_sell_transaction(wallet, TOKEN_TYPE, 70, coins, gas, 750)
        assert all(c.ref.encode() in tx for c in coins)

        tx = ex.build_sell_transaction(wallet, TOKEN_TYPE, 40, coins, gas, 750)
        assert coins[1].ref.encode() in tx
        assert coins[0].ref.encode() not in tx
        assert coins[2].ref.encode() not in tx

    def test_clears_ownership_below_dust(self, gateway, launchpad, catalog):
        wallets = make_wallets(2)
        fund(gateway, wallets)
        hold(gateway, wallets[0], 10)
        catalog.upsert(Token(listing_id="ABC123", token_address=TOKEN_TYPE, name="Meme",
                             symbol="MEME", owned_token=True))
        ex = executor(gateway, launchpad, wallets, catalog=catalog)

        async def go():
            await ex.sell(TOKEN_TYPE, 100)
            await ex.drain()

        asyncio.run(go())
        assert catalog.get("ABC123").owned_token is False

    def test_keeps_ownership_above_dust(self, gateway, launchpad, catalog):
        wallets = make_wallets(1)
        fund(gateway, wallets)
        hold(gateway, wallets[0], launchpad.token_supply // 10)  # 10% (the fake never deducts)
        catalog.upsert(Token(listing_id="ABC123", token_address=TOKEN_TYPE, name="Meme",
                             symbol="MEME", owned_token=True))
        ex = executor(gateway, launchpad, wallets, catalog=catalog)

        async def go():
            await ex.sell(TOKEN_TYPE, 50)
            await ex.drain()

        asyncio.run(go())
        assert catalog.get("ABC123").owned_token is True


class TestBalances:

    def test_owned_percentage(self, gateway, launchpad):
        wallets = make_wallets(2)
        hold(gateway, wallets[0], launchpad.token_supply // 100)  # 1%
        hold(gateway, wallets[1], launchpad.token_supply // 400)  # 0.25%
        ex = executor(gateway, launchpad, wallets)
        assert asyncio.run(ex.owned_percentage(TOKEN_TYPE)) == 1.25

    def test_failed_lookup_counts_as_zero(self, gateway, launchpad):
        wallets = make_wallets(2)
        hold(gateway, wallets[0], launchpad.token_supply // 100)
        gateway.failing_owners.add(wallets[1].address)
        ex = executor(gateway, launchpad, wallets)
        assert asyncio.run(ex.owned_percentage(TOKEN_TYPE)) == 1.0

    def test_wallet_balances(self, gateway, launchpad):
        wallets = make_wallets(2)
        fund(gateway, wallets, sui=3)
        ex = executor(gateway, launchpad, wallets)
        assert asyncio.run(ex.wallet_balances()) == [3 * 10 ** 9, 3 * 10 ** 9]
