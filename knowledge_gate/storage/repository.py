"""
Repository pattern for data access.

Handles the append-only Sparks ledger and the sink the orchestrator hands
completed charges to.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from .db import DEFAULT_DB_PATH, get_connection
from .models import ChargeRecord

logger = logging.getLogger(__name__)

_INSERT_CHARGE = """
    INSERT INTO spark_transaction
    (timestamp, model_id, sparks_charged, cost_usd, tokens_used, mode)
    VALUES (?, ?, ?, ?, ?, ?)
"""

_SELECT_CHARGES = """
    SELECT timestamp, model_id, sparks_charged, cost_usd, tokens_used, mode
    FROM spark_transaction
"""


def _row_to_record(row) -> ChargeRecord:
    return ChargeRecord(
        timestamp=datetime.fromisoformat(row[0]),
        model_id=row[1],
        sparks_charged=row[2],
        cost_usd=row[3],
        tokens_used=row[4],
        mode=row[5],
    )


def _record_params(record: ChargeRecord) -> tuple:
    return (
        record.timestamp.isoformat(),
        record.model_id,
        record.sparks_charged,
        record.cost_usd,
        record.tokens_used,
        record.mode,
    )


class LedgerRepository:
    """Repository for reading the Sparks ledger.

    Provides a higher-level interface over the ledger table for reporting.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_recent_charges(
        self,
        mode: Optional[str] = None,
        model_id: Optional[str] = None,
        days: Optional[int] = None,
        limit: int = 1000
    ) -> List[ChargeRecord]:
        """Get recent charges with optional filtering.

        Args:
            mode: Optional filter for a search mode
            model_id: Optional filter for a specific model
            days: Optional number of days to look back
            limit: Maximum number of records to return

        Returns:
            List of charge records ordered by timestamp (newest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = _SELECT_CHARGES
            params: list = []
            conditions = []

            if mode:
                conditions.append("mode = ?")
                params.append(mode)
            if model_id:
                conditions.append("model_id = ?")
                params.append(model_id)
            if days is not None:
                cutoff = (datetime.now() - timedelta(days=days)).isoformat()
                conditions.append("timestamp >= ?")
                params.append(cutoff)

            if conditions:
                query += " WHERE " + " AND ".join(conditions)

            query += " ORDER BY timestamp DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [_row_to_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_spend_stats(
        self,
        mode: Optional[str] = None,
        days: int = 30
    ) -> Dict[str, float]:
        """Get spend statistics for the specified time period.

        Args:
            mode: Optional filter for a search mode
            days: Number of days to include in the statistics

        Returns:
            Dictionary with transaction count, Sparks charged, USD cost and tokens
        """
        conn = get_connection(self.db_path)
        try:
            cutoff = (datetime.now() - timedelta(days=days)).isoformat()

            query = """
                SELECT
                    COUNT(*) as total_transactions,
                    SUM(sparks_charged) as total_sparks,
                    SUM(cost_usd) as total_cost_usd,
                    SUM(tokens_used) as total_tokens
                FROM spark_transaction
                WHERE timestamp >= ?
            """
            params = [cutoff]

            if mode:
                query += " AND mode = ?"
                params.append(mode)

            row = conn.execute(query, params).fetchone()

            return {
                "total_transactions": row[0] or 0,
                "total_sparks": float(row[1] or 0),
                "total_cost_usd": float(row[2] or 0),
                "total_tokens": row[3] or 0
            }
        finally:
            conn.close()


class SqliteLedger:
    """Ledger sink that appends a request's charges in one transaction."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        initialize_schema(db_path)

    def record(self, charges: Sequence[ChargeRecord]) -> None:
        insert_charge_records(list(charges), self.db_path)
        logger.info("Logged %d charge record(s) to %s", len(charges), self.db_path)


_default_repository: Optional[LedgerRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> LedgerRepository:
    """Get a repository instance.

    This function provides a singleton instance of the LedgerRepository.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of LedgerRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = LedgerRepository(db_path)
    return _default_repository


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the spark_transaction table if it doesn't exist.

    This creates an append-only ledger for immutable charge records.
    No UPDATE or DELETE operations should ever be performed on this table.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS spark_transaction (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                model_id TEXT NOT NULL,
                sparks_charged REAL NOT NULL,
                cost_usd REAL NOT NULL,
                tokens_used INTEGER NOT NULL,
                mode TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def insert_charge_record(record: ChargeRecord, db_path: str = DEFAULT_DB_PATH) -> None:
    """Append a single charge record to the ledger.

    Args:
        record: The charge to record
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute(_INSERT_CHARGE, _record_params(record))
        conn.commit()
    finally:
        conn.close()


def insert_charge_records(records: List[ChargeRecord], db_path: str = DEFAULT_DB_PATH) -> None:
    """Append multiple charge records atomically.

    All records are inserted in a single transaction to ensure consistency.

    Args:
        records: Charge records to append
        db_path: Path to SQLite database file
    """
    if not records:
        return

    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        for record in records:
            conn.execute(_INSERT_CHARGE, _record_params(record))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetch_recent_charges(
    mode: Optional[str] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[ChargeRecord]:
    """Fetch recent charges, newest first, optionally filtered by mode.

    Args:
        mode: Optional filter for a search mode
        limit: Maximum number of records to return
        db_path: Path to SQLite database file

    Returns:
        List of charge records ordered by timestamp (newest first)
    """
    return LedgerRepository(db_path).get_recent_charges(mode=mode, limit=limit)
