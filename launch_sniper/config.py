"""
Configuration for the launch sniper.

Everything comes from the environment (or a .env file). The only things we
cannot run without are an RPC endpoint and at least one funded wallet key.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

SUI_COIN_TYPE = "0x2::sui::SUI"
MIST_PER_SUI = 1_000_000_000


class ConfigError(Exception):
    """Raised at startup when required configuration is missing."""


def _wallet_keys_from_env() -> list[str]:
    keys = [os.getenv(f"PK{i}", "") for i in range(1, 5)]
    return [k for k in keys if k]


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "")
    return int(value) if value else None


@dataclass
class RPCConfig:
    https_endpoint: str = os.getenv("HTTPS_ENDPOINT", "")
    graphql_url: str = os.getenv("GRAPHQL_URL", "https://sui-mainnet.mystenlabs.com/graphql")
    request_timeout: float = float(os.getenv("RPC_TIMEOUT", "30"))
    high_latency_ms: float = 1000.0  # Warn above this at startup


@dataclass
class WalletConfig:
    private_keys: list[str] = field(default_factory=_wallet_keys_from_env)


@dataclass
class LaunchpadConfig:
    package_id: str = os.getenv(
        "TURBOS_PACKAGE",
        "0x96e1396c8a771c8ae404b86328dc27e7b66af39847a31926980c96dbc1096a15",
    )
    module: str = "turbospump"
    config_object_id: str = os.getenv(
        "TURBOS_CONFIG",
        "0xd86685fc3c3d989385b9311ef55bfc01653105670209ac4276ebb6c83d7df928",
    )
    config_initial_shared_version: int = 412321437
    clock_object_id: str = "0x6"
    clock_initial_shared_version: int = 1
    token_supply: int = 10_000_000_000_000_000  # Every launch mints the same supply

    @property
    def created_event_type(self) -> str:
        return f"{self.package_id}::{self.module}::CreatedEvent"

    @property
    def sell_function(self) -> str:
        return f"{self.package_id}::{self.module}::sell"

    def target(self, function: str) -> str:
        return f"{self.package_id}::{self.module}::{function}"


@dataclass
class GasConfig:
    buy_budget: int = int(os.getenv("BUY_GAS_BUDGET", "20000000"))
    buy_price: int = int(os.getenv("BUY_GAS_PRICE", "800"))
    sell_budget: int = int(os.getenv("SELL_GAS_BUDGET", "50000000"))
    sell_price: Optional[int] = _optional_int("SELL_GAS_PRICE")  # None = reference gas price


@dataclass
class WatcherConfig:
    creation_batch_size: int = 1
    sell_batch_size: int = 5
    sell_poll_delay: float = 0.1  # seconds between creator-sell polls
    error_backoff: float = float(os.getenv("POLL_ERROR_BACKOFF", "1.0"))
    max_in_flight: int = int(os.getenv("MAX_IN_FLIGHT", "16"))
    ownership_check_delay: float = 1.0  # give sells a moment to land
    dust_threshold_pct: float = 0.1  # below this we no longer "own" a token


@dataclass
class StoreConfig:
    db_path: str = os.getenv("TOKEN_DB_PATH", "data/tokens.db")


@dataclass
class AgentConfig:
    rpc: RPCConfig = field(default_factory=RPCConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    launchpad: LaunchpadConfig = field(default_factory=LaunchpadConfig)
    gas: GasConfig = field(default_factory=GasConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def validate(self):
        """Fail fast on missing settings. Only ever called at startup."""
        missing = []
        if not self.rpc.https_endpoint:
            missing.append("HTTPS_ENDPOINT")
        if not self.wallet.private_keys:
            missing.append("PK1..PK4")
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
