"""
Position Store

SQLite persistence for tracked entities, current positions and liquidation
alert records.
"""

import sqlite3
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from ..config import RiskTier, TIER_ORDER, Config, config as default_config
from ..models import Position

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Database connection settings
DB_TIMEOUT = 10.0  # seconds
DB_RETRIES = 3
DB_RETRY_BACKOFF = 0.5  # seconds


@dataclass
class StoredPosition:
    """A row from the positions table."""
    id: int
    address: str
    coin: str
    entry_price: float
    position_size: float
    leverage: float
    liquidation_price: Optional[float]
    unrealized_pnl: float
    margin_used: float
    position_value: float
    current_price: Optional[float]
    liquidation_distance: Optional[float]
    risk_tier: Optional[RiskTier]
    last_updated: str

    @property
    def key(self) -> str:
        return f"{self.address}:{self.coin}"


@dataclass
class StoredAlert:
    """A row from the liquidation_alerts table."""
    id: int
    position_id: int
    alert_type: RiskTier
    distance_to_liquidation: Optional[float]
    current_price: float
    created_at: str


@dataclass
class StoreStats:
    """Statistics about stored positions."""
    total_entities: int
    total_positions: int
    total_alerts: int
    tier_counts: Dict[str, int]
    total_notional: float


class PositionStore:
    """
    SQLite store keyed by (address, coin).

    Each public call opens its own connection, so upserts on distinct keys
    can run from different tasks without external locking.
    """

    def __init__(self, db_path: Path = None, cfg: Config = None):
        cfg = cfg or default_config
        self.db_path = Path(db_path or cfg.positions_db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create database directory: {e}")
            raise
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup."""
        conn = sqlite3.connect(str(self.db_path), timeout=DB_TIMEOUT)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _execute_with_retry(
        self,
        operation: Callable[[], T],
        retries: int = DB_RETRIES,
        backoff: float = DB_RETRY_BACKOFF,
    ) -> T:
        """
        Execute a database operation with retry logic for locked database.

        Raises:
            sqlite3.Error: If all retries fail
        """
        for attempt in range(retries):
            try:
                return operation()
            except sqlite3.OperationalError as e:
                if "locked" in str(e).lower() and attempt < retries - 1:
                    wait_time = backoff * (2 ** attempt)
                    logger.warning(
                        f"Database locked, retrying in {wait_time:.1f}s "
                        f"({attempt + 1}/{retries})"
                    )
                    time.sleep(wait_time)
                    continue
                raise

    def _init_db(self):
        """Initialize database schema."""
        try:
            with self._get_connection() as conn:
                conn.execute("PRAGMA journal_mode=WAL")

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS entities (
                        address TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        twitter TEXT,
                        entity_type TEXT,
                        chain TEXT,
                        collected_at TEXT NOT NULL
                    )
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS positions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        address TEXT NOT NULL,
                        coin TEXT NOT NULL,
                        entry_price REAL NOT NULL,
                        position_size REAL NOT NULL,
                        leverage REAL NOT NULL,
                        liquidation_price REAL,
                        unrealized_pnl REAL NOT NULL,
                        margin_used REAL NOT NULL,
                        position_value REAL NOT NULL,
                        current_price REAL,
                        liquidation_distance REAL,
                        risk_tier TEXT,
                        last_updated TEXT NOT NULL,
                        UNIQUE(address, coin)
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_positions_tier
                    ON positions(risk_tier)
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_positions_distance
                    ON positions(liquidation_distance)
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS liquidation_alerts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        position_id INTEGER NOT NULL,
                        alert_type TEXT NOT NULL,
                        distance_to_liquidation REAL,
                        current_price REAL NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_alerts_position
                    ON liquidation_alerts(position_id)
                """)
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize position database: {e}")
            raise

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def upsert_entity(
        self,
        address: str,
        name: str,
        twitter: Optional[str] = None,
        entity_type: Optional[str] = None,
        chain: str = "hyperliquid",
    ):
        """Add or update a tracked address."""
        now = datetime.now(timezone.utc).isoformat()
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO entities (address, name, twitter, entity_type, chain, collected_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                    name = excluded.name,
                    twitter = excluded.twitter,
                    entity_type = excluded.entity_type,
                    chain = excluded.chain
            """, (address, name, twitter, entity_type, chain, now))

    def remove_entity(self, address: str) -> bool:
        """Stop tracking an address. Its stored positions are removed too."""
        with self._get_connection() as conn:
            removed = conn.execute(
                "DELETE FROM entities WHERE address = ?", (address,)
            ).rowcount
        self.delete_stale_positions(address, [])
        return removed > 0

    def get_tracked_addresses(self) -> List[str]:
        """All tracked addresses."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT address FROM entities ORDER BY address").fetchall()
            return [row["address"] for row in rows]

    def get_entity_names(self) -> Dict[str, str]:
        """Map of address to entity name."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT address, name FROM entities").fetchall()
            return {row["address"]: row["name"] for row in rows}

    # -------------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------------

    def upsert_position(self, position: Position) -> int:
        """
        Insert or update the row for (address, coin).

        Args:
            position: Enriched position

        Returns:
            Row id of the position
        """
        now = (position.last_updated or datetime.now(timezone.utc)).isoformat()
        tier = position.risk_tier.value if position.risk_tier else None

        def _do_upsert() -> int:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO positions
                    (address, coin, entry_price, position_size, leverage,
                     liquidation_price, unrealized_pnl, margin_used, position_value,
                     current_price, liquidation_distance, risk_tier, last_updated)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(address, coin) DO UPDATE SET
                        entry_price = excluded.entry_price,
                        position_size = excluded.position_size,
                        leverage = excluded.leverage,
                        liquidation_price = excluded.liquidation_price,
                        unrealized_pnl = excluded.unrealized_pnl,
                        margin_used = excluded.margin_used,
                        position_value = excluded.position_value,
                        current_price = excluded.current_price,
                        liquidation_distance = excluded.liquidation_distance,
                        risk_tier = excluded.risk_tier,
                        last_updated = excluded.last_updated
                """, (
                    position.address, position.coin, position.entry_price,
                    position.size, position.leverage, position.liquidation_price,
                    position.unrealized_pnl or 0.0, position.margin_used,
                    position.position_value or 0.0, position.current_price,
                    position.liquidation_distance, tier, now,
                ))
                row = conn.execute(
                    "SELECT id FROM positions WHERE address = ? AND coin = ?",
                    (position.address, position.coin),
                ).fetchone()
                return row["id"]

        return self._execute_with_retry(_do_upsert)

    def delete_stale_positions(self, address: str, keep_coins: Iterable[str]) -> int:
        """
        Delete rows for address whose coin is not in keep_coins.

        Alerts belonging to the deleted rows are removed in the same
        transaction. An empty keep_coins deletes every row for the address.

        Returns:
            Number of positions deleted
        """
        keep = list(dict.fromkeys(keep_coins))

        def _do_delete() -> int:
            with self._get_connection() as conn:
                if keep:
                    placeholders = ",".join("?" for _ in keep)
                    where = f"address = ? AND coin NOT IN ({placeholders})"
                    params = [address, *keep]
                else:
                    where = "address = ?"
                    params = [address]

                conn.execute(f"""
                    DELETE FROM liquidation_alerts
                    WHERE position_id IN (SELECT id FROM positions WHERE {where})
                """, params)
                return conn.execute(f"DELETE FROM positions WHERE {where}", params).rowcount

        deleted = self._execute_with_retry(_do_delete)
        if deleted:
            logger.info(f"Removed {deleted} closed positions for {address[:10]}...")
        return deleted

    def get_positions(self, min_tier: Optional[RiskTier] = None) -> List[StoredPosition]:
        """
        Stored positions, sorted by ascending liquidation distance.

        Args:
            min_tier: Only rows at least this risky (None = all)
        """
        query = "SELECT * FROM positions"
        params: list = []
        if min_tier is not None:
            tiers = [t.value for t in TIER_ORDER[:min_tier.rank + 1]]
            query += f" WHERE risk_tier IN ({','.join('?' for _ in tiers)})"
            params.extend(tiers)
        query += " ORDER BY liquidation_distance IS NOT NULL, liquidation_distance ASC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_position(row) for row in rows]

    def get_last_update_time(self) -> Optional[datetime]:
        """Most recent last_updated across all positions."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT MAX(last_updated) AS ts FROM positions").fetchone()
        if row and row["ts"]:
            return datetime.fromisoformat(row["ts"])
        return None

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def create_alert(
        self,
        position_id: int,
        tier: RiskTier,
        distance: Optional[float],
        price: float,
    ) -> int:
        """Record a liquidation alert for a stored position."""
        now = datetime.now(timezone.utc).isoformat()

        def _do_insert() -> int:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO liquidation_alerts
                    (position_id, alert_type, distance_to_liquidation, current_price, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (position_id, tier.value, distance, price, now))
                return cursor.lastrowid

        return self._execute_with_retry(_do_insert)

    def get_recent_alerts(self, limit: int = 50) -> List[StoredAlert]:
        """Most recent alerts first."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM liquidation_alerts
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """, (limit,)).fetchall()
            return [
                StoredAlert(
                    id=row["id"],
                    position_id=row["position_id"],
                    alert_type=RiskTier(row["alert_type"]),
                    distance_to_liquidation=row["distance_to_liquidation"],
                    current_price=row["current_price"],
                    created_at=row["created_at"],
                )
                for row in rows
            ]

    def get_alerts_for_position(self, address: str, coin: str) -> List[StoredAlert]:
        """Alerts for the stored row of (address, coin)."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT a.* FROM liquidation_alerts a
                JOIN positions p ON p.id = a.position_id
                WHERE p.address = ? AND p.coin = ?
                ORDER BY a.id
            """, (address, coin)).fetchall()
            return [
                StoredAlert(
                    id=row["id"],
                    position_id=row["position_id"],
                    alert_type=RiskTier(row["alert_type"]),
                    distance_to_liquidation=row["distance_to_liquidation"],
                    current_price=row["current_price"],
                    created_at=row["created_at"],
                )
                for row in rows
            ]

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_stats(self) -> StoreStats:
        """Get statistics about the store."""
        with self._get_connection() as conn:
            entities = conn.execute("SELECT COUNT(*) FROM entities").fetchone()[0]
            total = conn.execute("SELECT COUNT(*) FROM positions").fetchone()[0]
            alerts = conn.execute("SELECT COUNT(*) FROM liquidation_alerts").fetchone()[0]
            notional = conn.execute(
                "SELECT COALESCE(SUM(position_value), 0) FROM positions"
            ).fetchone()[0]
            rows = conn.execute(
                "SELECT risk_tier, COUNT(*) AS n FROM positions GROUP BY risk_tier"
            ).fetchall()

        tier_counts = {t.value: 0 for t in TIER_ORDER}
        for row in rows:
            if row["risk_tier"] in tier_counts:
                tier_counts[row["risk_tier"]] = row["n"]

        return StoreStats(
            total_entities=entities,
            total_positions=total,
            total_alerts=alerts,
            tier_counts=tier_counts,
            total_notional=notional,
        )

    # -------------------------------------------------------------------------
    # Private Helpers
    # -------------------------------------------------------------------------

    def _row_to_position(self, row: sqlite3.Row) -> StoredPosition:
        return StoredPosition(
            id=row["id"],
            address=row["address"],
            coin=row["coin"],
            entry_price=row["entry_price"],
            position_size=row["position_size"],
            leverage=row["leverage"],
            liquidation_price=row["liquidation_price"],
            unrealized_pnl=row["unrealized_pnl"],
            margin_used=row["margin_used"],
            position_value=row["position_value"],
            current_price=row["current_price"],
            liquidation_distance=row["liquidation_distance"],
            risk_tier=RiskTier(row["risk_tier"]) if row["risk_tier"] else None,
            last_updated=row["last_updated"],
        )
