"""
Token Catalog - every launch we have seen, and whether we hold it.

SQLite on local disk. Rows are keyed by a short listing id that operators use
to refer to a token (sell XYZ123 50). The ownership flag is what the creator
sell watcher checks before dumping a position.
"""

import logging
import random
import sqlite3
import string
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

LISTING_ID_LENGTH = 6
_LISTING_ID_ALPHABET = string.ascii_uppercase + string.digits

_COLUMNS = (
    "listing_id", "token_address", "name", "symbol", "pool_id", "creator_address",
    "description", "created_at", "uri", "owned_token", "twitter", "telegram", "website",
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tokens (
    listing_id TEXT PRIMARY KEY,
    token_address TEXT UNIQUE,
    name TEXT,
    symbol TEXT,
    pool_id TEXT,
    creator_address TEXT,
    description TEXT,
    created_at TEXT,
    uri TEXT,
    owned_token INTEGER DEFAULT 0,
    twitter TEXT,
    telegram TEXT,
    website TEXT
)
"""


def generate_listing_id(rng: random.Random = random) -> str:
    """Short and human-typeable. Uniqueness is best effort; upsert resolves clashes."""
    return "".join(rng.choice(_LISTING_ID_ALPHABET) for _ in range(LISTING_ID_LENGTH))


@dataclass
class Token:
    listing_id: str
    token_address: str
    name: str
    symbol: str
    pool_id: str = ""
    creator_address: str = ""
    description: str = ""
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    uri: str = ""
    owned_token: bool = False
    twitter: str = ""
    telegram: str = ""
    website: str = ""


def _row_to_token(row: sqlite3.Row) -> Token:
    data = dict(row)
    data["owned_token"] = bool(data["owned_token"])
    for key in ("twitter", "telegram", "website"):
        data[key] = data[key] or ""
    return Token(**data)


class TokenCatalog:
    """
    Stores tokens by listing id and address.

    ``db_path`` may be ":memory:" (tests, dry runs). The connection is opened
    lazily so constructing a catalog never touches the disk.
    """

    def __init__(self, db_path: str = "data/tokens.db"):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def initialize(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            logger.info("Opening token catalog at %s", self.db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(_SCHEMA)
        self._conn.commit()
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def upsert(self, token: Token):
        conn = self.initialize()
        values = asdict(token)
        values["owned_token"] = 1 if token.owned_token else 0
        for key in ("twitter", "telegram", "website"):
            values[key] = values[key] or None
        placeholders = ", ".join("?" for _ in _COLUMNS)
        conn.execute(
            f"INSERT OR REPLACE INTO tokens ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            [values[c] for c in _COLUMNS],
        )
        conn.commit()

    def get(self, listing_id: str) -> Optional[Token]:
        row = self.initialize().execute(
            "SELECT * FROM tokens WHERE listing_id = ?", (listing_id,)
        ).fetchone()
        return _row_to_token(row) if row else None

    def get_by_address(self, token_address: str) -> Optional[Token]:
        row = self.initialize().execute(
            "SELECT * FROM tokens WHERE token_address = ?", (token_address,)
        ).fetchone()
        return _row_to_token(row) if row else None

    def resolve(self, identifier: str) -> Optional[Token]:
        """Look a token up by listing id first, then by address."""
        return self.get(identifier.upper()) or self.get_by_address(identifier)

    def set_ownership(self, token_address: str, owned: bool):
        conn = self.initialize()
        conn.execute(
            "UPDATE tokens SET owned_token = ? WHERE token_address = ?",
            (1 if owned else 0, token_address),
        )
        conn.commit()

    def list_owned(self) -> list[Token]:
        rows = self.initialize().execute("SELECT * FROM tokens WHERE owned_token = 1").fetchall()
        return [_row_to_token(r) for r in rows]

    def count_by_creator(self, creator_address: str) -> int:
        row = self.initialize().execute(
            "SELECT COUNT(*) FROM tokens WHERE lower(creator_address) = lower(?)",
            (creator_address,),
        ).fetchone()
        return int(row[0])
