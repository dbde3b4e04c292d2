"""
CLI Entry Point for the launch sniper.

Commands:
  run       - Start watching launches (auto-buy off unless --autobuy)
  buy       - Buy a token across the wallet pool
  sell      - Sell a percentage of a token across the wallet pool
  balance   - Show SUI balance per wallet
  holdings  - Show how much of a token's supply the pool holds
  tokens    - List tokens the catalog marks as owned
  health    - Check RPC connectivity and latency
  config    - Show current configuration
"""

import asyncio
import logging
import math
from typing import Optional

import click
import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from launch_sniper import __version__
from launch_sniper.agent import SniperAgent
from launch_sniper.config import MIST_PER_SUI, AgentConfig, ConfigError
from launch_sniper.strategies.auto_buy import RiskCriteria

console = Console()


def _load_config() -> AgentConfig:
    config = AgentConfig()
    try:
        config.validate()
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        console.print("Set up your .env file first (HTTPS_ENDPOINT, PK1..PK4).")
        raise SystemExit(1)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    return config


def _agent(config: AgentConfig, criteria: Optional[RiskCriteria] = None) -> SniperAgent:
    return SniperAgent(config, criteria)


async def _with_agent(agent, action):
    """Run ``action`` then wait for fired orders before the loop goes away."""
    try:
        return await action()
    finally:
        await agent.executor.drain(timeout=60)
        await agent.gateway.close()
        agent.catalog.close()


@click.group()
@click.version_option(version=__version__, prog_name="launch-sniper")
def cli():
    """launch-sniper - snipe new launches across a wallet pool."""
    pass


@cli.command()
@click.option("--autobuy/--no-autobuy", default=False, help="Buy launches that pass the criteria")
@click.option("--buy-amount", default=1.0, help="SUI to spend per auto-buy (split across wallets)")
@click.option("--max-previous-launches", default=4)
@click.option("--min-creator-balance", default=0.0, help="SUI")
@click.option("--max-creator-supply", default=10.0, help="Percent of supply")
@click.option("--min-initial-liquidity", default=0.0)
@click.option("--max-token-price", default=0.0, help="0 means no limit")
@click.option("--require-socials/--allow-missing-socials", default=True)
@click.option("--blacklist", multiple=True, help="Creator address to never buy from")
def run(autobuy, buy_amount, max_previous_launches, min_creator_balance, max_creator_supply,
        min_initial_liquidity, max_token_price, require_socials, blacklist):
    """Start the sniper."""
    config = _load_config()
    criteria = RiskCriteria(
        enabled=autobuy,
        buy_amount=buy_amount,
        max_previous_launches=max_previous_launches,
        min_creator_balance=min_creator_balance,
        max_creator_supply=max_creator_supply,
        min_initial_liquidity=min_initial_liquidity,
        max_token_price=max_token_price,
        require_social_links=require_socials,
        blacklisted_creators=list(blacklist),
    )
    agent = _agent(config, criteria)
    try:
        asyncio.run(agent.start())
    except KeyboardInterrupt:
        pass


@cli.command()
@click.argument("token")
@click.argument("amount", type=float)
@click.option("--min-output", default=0, help="Minimum tokens out per wallet")
@click.confirmation_option(prompt="This will spend REAL SUI. Are you sure?")
def buy(token, amount, min_output):
    """Buy AMOUNT SUI of TOKEN (listing id or coin type)."""
    config = _load_config()
    agent = _agent(config)

    async def action():
        known = agent.catalog.resolve(token)
        token_address = known.token_address if known else token
        result = await agent.executor.buy(token_address, amount, min_output)
        if result.success:
            console.print(f"[green]Buy fired from {len(result.wallets)} wallets "
                          f"in {result.elapsed_ms:.0f}ms[/green]")
        else:
            console.print(f"[red]Buy failed: {result.error}[/red]")

    asyncio.run(_with_agent(agent, action))


@cli.command()
@click.argument("token")
@click.argument("percentage", type=click.IntRange(1, 100))
def sell(token, percentage):
    """Sell PERCENTAGE of TOKEN (listing id or coin type)."""
    config = _load_config()
    agent = _agent(config)

    async def action():
        known = agent.catalog.resolve(token)
        token_address = known.token_address if known else token
        result = await agent.executor.sell(token_address, percentage)
        if not result.success:
            console.print(f"[red]Error selling {percentage}%: {result.error}[/red]")
            return
        console.print(f"[green]Sold {percentage}% from {len(result.wallets)} wallets[/green]")
        await asyncio.sleep(config.watcher.ownership_check_delay)
        remaining = await agent.executor.owned_percentage(token_address)
        console.print(f"Remaining balance: {remaining:.2f}% of total supply")

    asyncio.run(_with_agent(agent, action))


@cli.command()
def balance():
    """Show SUI balance of every wallet."""
    config = _load_config()
    agent = _agent(config)

    async def action():
        balances = await agent.executor.wallet_balances()
        table = Table(title="Wallet Balances")
        table.add_column("#")
        table.add_column("Address", style="cyan")
        table.add_column("SUI", style="green", justify="right")
        for i, (wallet, mist) in enumerate(zip(agent.wallets, balances), 1):
            table.add_row(str(i), wallet.address, f"{mist / MIST_PER_SUI:.2f}")
        table.add_row("", "[bold]Total[/bold]", f"[bold]{sum(balances) / MIST_PER_SUI:.2f}[/bold]")
        console.print(table)

    asyncio.run(_with_agent(agent, action))


@cli.command()
@click.argument("token")
def holdings(token):
    """Show what share of TOKEN's supply the pool holds."""
    config = _load_config()
    agent = _agent(config)

    async def action():
        known = agent.catalog.resolve(token)
        token_address = known.token_address if known else token
        pct = await agent.executor.owned_percentage(token_address)
        label = f"{known.name} ({known.symbol})" if known else token_address
        console.print(f"{label}: [bold]{pct:.2f}%[/bold] of total supply")

    asyncio.run(_with_agent(agent, action))


@cli.command()
def tokens():
    """List tokens the catalog marks as owned."""
    from launch_sniper.trading.catalog import TokenCatalog

    config = AgentConfig()
    catalog = TokenCatalog(config.store.db_path)
    owned = catalog.list_owned()
    catalog.close()
    if not owned:
        console.print("[yellow]No owned tokens.[/yellow]")
        return

    table = Table(title=f"{len(owned)} Owned Tokens")
    table.add_column("Listing", style="cyan")
    table.add_column("Name")
    table.add_column("Symbol")
    table.add_column("Creator")
    table.add_column("Seen")
    for t in owned:
        table.add_row(t.listing_id, t.name[:30], t.symbol, t.creator_address[:12] + "...",
                      t.created_at[:19])
    console.print(table)


@cli.command()
def health():
    """Check the RPC endpoint: raw connectivity, chain id, latency."""
    config = _load_config()
    endpoint = config.rpc.https_endpoint

    console.print(f"[cyan]Testing basic connectivity to {endpoint}...[/cyan]")
    try:
        resp = requests.get(endpoint, timeout=5)
        console.print(f"  Response code: {resp.status_code}")
    except requests.RequestException as e:
        console.print(f"[red]Cannot establish basic connection: {e}[/red]")
        raise SystemExit(1)

    agent = _agent(config)

    async def action():
        chain = await agent.gateway.get_chain_identifier()
        report = await agent.gateway.measure_latency()
        for i, latency in enumerate(report.latencies_ms, 1):
            mark = "[red]failed[/red]" if latency == math.inf else f"{latency:.0f}ms"
            console.print(f"  Attempt {i}: {mark}")
        console.print(Panel(
            f"Chain: {chain}\n"
            f"Average: {report.average_ms:.2f}ms\n"
            f"Success rate: {report.successes}/{report.attempts}",
            title="[bold]RPC Health[/bold]",
        ))

    asyncio.run(_with_agent(agent, action))


@cli.command()
def config():
    """Show current configuration."""
    cfg = AgentConfig()
    defaults = RiskCriteria()

    console.print(Panel(
        f"RPC: {cfg.rpc.https_endpoint or '[red]Not set[/red]'}\n"
        f"GraphQL: {cfg.rpc.graphql_url}\n"
        f"Wallets: {len(cfg.wallet.private_keys)} configured\n"
        f"Launchpad package: {cfg.launchpad.package_id}\n"
        f"Buy gas: budget {cfg.gas.buy_budget}, price {cfg.gas.buy_price}\n"
        f"Sell gas: budget {cfg.gas.sell_budget}, price {cfg.gas.sell_price or 'reference'}\n"
        f"Max in-flight launches: {cfg.watcher.max_in_flight}\n"
        f"Token catalog: {cfg.store.db_path}\n"
        f"Default buy amount: {defaults.buy_amount} SUI\n"
        f"Default max creator supply: {defaults.max_creator_supply}%",
        title="[bold]Launch Sniper Configuration[/bold]",
    ))


def main():
    cli()


if __name__ == "__main__":
    main()
