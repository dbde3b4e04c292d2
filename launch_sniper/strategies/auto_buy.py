"""
Auto-buy decision engine.

A fresh launch gets exactly one look. The address goes into the attempt set
before any criterion is checked, so a token seen twice (overlapping polls,
a replayed batch) can never be bought twice.

Checks, in order:
1. Feature switched on
2. Never evaluated before
3. No blacklisted words in description or links (bridges, relaunches, ...)
4. At least 2 of 3 valid social links, if required
5. Creator and market limits from the current settings
"""

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


BLACKLISTED_WORDS = (
    "eth",
    "ethereum",
    "sol",
    "solana",
    "btc",
    "bitcoin",
    "avax",
    "avalanche",
    "bsc",
    "binance",
    "polygon",
    "matic",
    "bridge",
    "migration",
    "v2",
    "relaunch",
)

# Whole-string, ASCII-only matches: \w never takes unicode letters and a
# trailing newline is not ignored
TWITTER_PATTERN = re.compile(r"(https?://)?(www\.)?(twitter\.com|x\.com)/[a-zA-Z0-9_]{1,15}/?",
                             re.ASCII)
TELEGRAM_PATTERN = re.compile(r"(https?://)?(www\.)?t\.me/[a-zA-Z0-9_]{5,}/?", re.ASCII)
WEBSITE_PATTERN = re.compile(r"(https?://)?([\w-]+\.)+[\w-]+(/[\w\-./?%&=]*)?", re.ASCII)

MIN_VALID_SOCIAL_LINKS = 2


@dataclass
class RiskCriteria:
    enabled: bool = False
    max_previous_launches: int = 4
    min_creator_balance: float = 0.0  # SUI
    max_creator_supply: float = 10.0  # % of supply held by the creator
    buy_amount: float = 1.0  # SUI, split across the wallet pool
    min_initial_liquidity: float = 0.0
    max_token_price: float = 0.0  # 0 means no limit
    blacklisted_creators: list[str] = field(default_factory=list)
    require_social_links: bool = True


@dataclass
class TokenMetrics:
    token_address: str
    creator_address: str
    previous_launches: int = 0
    creator_balance: float = 0.0
    creator_supply: float = 0.0
    initial_liquidity: Optional[float] = None
    token_price: Optional[float] = None
    description: str = ""
    twitter: str = ""
    telegram: str = ""
    website: str = ""


def contains_blacklisted_words(text: Optional[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(word in lowered for word in BLACKLISTED_WORDS)


def has_blacklisted_content(metrics: TokenMetrics) -> bool:
    return any(
        contains_blacklisted_words(text)
        for text in (metrics.description, metrics.twitter, metrics.telegram, metrics.website)
    )


def count_valid_social_links(twitter: str = "", telegram: str = "", website: str = "") -> int:
    checks = (
        (TWITTER_PATTERN, twitter),
        (TELEGRAM_PATTERN, telegram),
        (WEBSITE_PATTERN, website),
    )
    return sum(1 for pattern, link in checks if link and pattern.fullmatch(link))


class AutoBuyEngine:
    """
    Owns the live settings and the attempt set for one agent.

    Everything here runs on the event loop thread with no awaits between
    checking and mutating state, which is what makes check-then-insert on the
    attempt set atomic. Do not add an await inside evaluate().
    """

    def __init__(self, criteria: Optional[RiskCriteria] = None):
        self._criteria = criteria or RiskCriteria()
        self.attempted: set[str] = set()

    @property
    def settings(self) -> RiskCriteria:
        """A copy. Mutate through toggle()/update()."""
        return dataclasses.replace(
            self._criteria,
            blacklisted_creators=list(self._criteria.blacklisted_creators),
        )

    def toggle(self, enabled: bool):
        self._criteria = dataclasses.replace(self._criteria, enabled=enabled)
        logger.info("Auto-buy %s", "enabled" if enabled else "disabled")

    def update(self, partial: dict):
        """Merge ``partial`` into the current settings. Unknown keys are rejected."""
        known = {f.name for f in dataclasses.fields(RiskCriteria)}
        unknown = set(partial) - known
        if unknown:
            raise ValueError(f"Unknown auto-buy settings: {', '.join(sorted(unknown))}")
        changes = dict(partial)
        if "blacklisted_creators" in changes:
            changes["blacklisted_creators"] = list(changes["blacklisted_creators"])
        self._criteria = dataclasses.replace(self._criteria, **changes)
        logger.info("Updated auto-buy settings: %s", self._criteria)

    def clear_attempts(self):
        self.attempted.clear()

    def evaluate(self, metrics: TokenMetrics) -> bool:
        settings = self._criteria
        if not settings.enabled:
            return False

        if metrics.token_address in self.attempted:
            logger.info("Already attempted %s, skipping", metrics.token_address)
            return False
        self.attempted.add(metrics.token_address)

        if has_blacklisted_content(metrics):
            logger.info("Rejected %s: blacklisted words", metrics.token_address)
            return False

        if settings.require_social_links:
            valid = count_valid_social_links(metrics.twitter, metrics.telegram, metrics.website)
            if valid < MIN_VALID_SOCIAL_LINKS:
                logger.info("Rejected %s: only %d valid social links",
                            metrics.token_address, valid)
                return False

        return (
            metrics.previous_launches <= settings.max_previous_launches
            and metrics.creator_balance >= settings.min_creator_balance
            and metrics.creator_supply <= settings.max_creator_supply
            and metrics.creator_address not in settings.blacklisted_creators
            and (metrics.initial_liquidity is None
                 or metrics.initial_liquidity >= settings.min_initial_liquidity)
            and (settings.max_token_price == 0
                 or metrics.token_price is None
                 or metrics.token_price <= settings.max_token_price)
        )
