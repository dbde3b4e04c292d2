"""
The Agent - wires the sniper together and keeps it running.

Startup:
1. Check the RPC is alive (and warn if it's slow)
2. Open the token catalog
3. Run the creation and creator-sell watchers until told to stop
"""

import asyncio
import logging
import math
import signal
from typing import Optional

from rich.console import Console
from rich.panel import Panel

from launch_sniper.config import MIST_PER_SUI, AgentConfig
from launch_sniper.ledger.gateway import GatewayError, SuiGateway
from launch_sniper.ledger.keys import load_wallets
from launch_sniper.strategies.auto_buy import AutoBuyEngine, RiskCriteria, TokenMetrics
from launch_sniper.tasks import BoundedDispatcher, DetachedTasks
from launch_sniper.trading.catalog import Token, TokenCatalog
from launch_sniper.trading.executor import OrderExecutor
from launch_sniper.watcher import EventWatcher

console = Console()
logger = logging.getLogger(__name__)


class SniperAgent:
    """
    One running sniper: a gateway, a wallet pool, a decision engine and a
    watcher, all owned by this instance.
    """

    BANNER = r"""
  _                          _        ____        _
 | |    __ _ _   _ _ __  ___| |__    / ___| _ __ (_)_ __   ___ _ __
 | |   / _` | | | | '_ \/ __| '_ \   \___ \| '_ \| | '_ \ / _ \ '__|
 | |__| (_| | |_| | | | \__ \ | | |   ___) | | | | | |_) |  __/ |
 |_____\__,_|\__,_|_| |_|___/_| |_|  |____/|_| |_|_| .__/ \___|_|
                                                  |_|
    """

    def __init__(self, config: AgentConfig, criteria: Optional[RiskCriteria] = None,
                 gateway=None, catalog: Optional[TokenCatalog] = None):
        self.config = config
        self.gateway = gateway or SuiGateway(
            config.rpc.https_endpoint, config.rpc.graphql_url, config.rpc.request_timeout
        )
        self.catalog = catalog or TokenCatalog(config.store.db_path)
        self.wallets = load_wallets(config.wallet.private_keys)
        self.engine = AutoBuyEngine(criteria)
        self.executor = OrderExecutor(
            self.gateway,
            self.wallets,
            config.launchpad,
            config.gas,
            watcher=config.watcher,
            catalog=self.catalog,
            tasks=DetachedTasks("orders"),
        )
        self.watcher = EventWatcher(
            self.gateway,
            self.engine,
            self.executor,
            self.catalog,
            config.launchpad,
            config=config.watcher,
            dispatcher=BoundedDispatcher(config.watcher.max_in_flight, "launches"),
            on_listing=self.show_listing,
        )

    async def health_check(self) -> float:
        """Average RPC latency in ms. Raises if the endpoint doesn't answer at all."""
        report = await self.gateway.measure_latency()
        if report.average_ms == math.inf:
            raise GatewayError("RPC is not responding")
        if report.average_ms > self.config.rpc.high_latency_ms:
            logger.warning("High RPC latency detected: %.0fms", report.average_ms)
        logger.info("RPC latency %.0fms (%d/%d ok)",
                    report.average_ms, report.successes, report.attempts)
        return report.average_ms

    def show_listing(self, token: Token, metrics: TokenMetrics, bought: bool):
        status = "[bold green]AUTO-BOUGHT[/bold green]" if bought else "[dim]watching[/dim]"
        console.print(Panel(
            f"Token: [bold]{token.name}[/bold] ({token.symbol})\n"
            f"Address: [cyan]{token.token_address}[/cyan]\n"
            f"Creator: {token.creator_address}\n"
            f"Creator balance: {metrics.creator_balance:.2f} SUI | "
            f"Creator supply: {metrics.creator_supply:.2f}% | "
            f"Previous launches: {metrics.previous_launches}\n"
            f"Socials: {token.twitter or '-'} | {token.telegram or '-'} | {token.website or '-'}\n"
            f"Status: {status}",
            title=f"[bold]New listing {token.listing_id}[/bold]",
        ))

    def _print_startup(self):
        console.print(self.BANNER, style="bold cyan")
        settings = self.engine.settings
        auto = "[bold green]ON[/bold green]" if settings.enabled else "[bold yellow]OFF[/bold yellow]"
        console.print(Panel(
            f"Auto-buy: {auto}\n"
            f"Wallets: [cyan]{len(self.wallets)}[/cyan]\n"
            f"Buy amount: [green]{settings.buy_amount} SUI[/green]\n"
            f"Max creator supply: {settings.max_creator_supply}%\n"
            f"Min creator balance: {settings.min_creator_balance} SUI\n"
            f"Max previous launches: {settings.max_previous_launches}\n"
            f"Require social links: {settings.require_social_links}\n"
            f"RPC: {self.config.rpc.https_endpoint}",
            title="[bold]Launch Sniper[/bold]",
        ))

    async def start(self):
        """Run until SIGINT/SIGTERM."""
        self._print_startup()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._shutdown_handler)
            except NotImplementedError:  # Windows
                pass

        await self.health_check()
        self.catalog.initialize()
        balances = await self.executor.wallet_balances()
        logger.info("Pool balance: %.2f SUI across %d wallets",
                    sum(balances) / MIST_PER_SUI, len(balances))

        console.print("\n[bold green]Watching for new launches...[/bold green]\n")
        try:
            await self.watcher.run()
        finally:
            await self._shutdown()

    def _shutdown_handler(self):
        console.print("\n[yellow]Shutdown signal received...[/yellow]")
        self.watcher.stop()

    async def _shutdown(self):
        console.print("[yellow]Shutting down...[/yellow]")
        # Launch handlers and dumps fire orders, so they go first
        await self.watcher.drain(timeout=5)
        await self.executor.drain(timeout=5)
        await self.gateway.close()
        self.catalog.close()
        console.print("[green]Stopped.[/green]")
