"""
Repository pattern for the usage ledger.

Handles schema creation and the append-only usage_record table.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import ServiceType, UsageRecord


_RECORD_COLUMNS = """
    id, user_id, service_type, resource_id, character_count,
    cost_cents, was_overage, billing_month, created_at
"""


def _row_to_record(row) -> UsageRecord:
    return UsageRecord(
        id=row[0],
        user_id=row[1],
        service_type=ServiceType(row[2]),
        resource_id=row[3],
        character_count=row[4],
        cost_cents=row[5],
        was_overage=bool(row[6]),
        billing_month=row[7],
        created_at=datetime.fromisoformat(row[8]),
    )


class UsageLedger:
    """Append-only store of UsageRecord rows.

    Exposes an insert and read queries only. There is deliberately no
    way to change or remove a record once written: corrections are
    made by appending new records.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the ledger with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def insert(
        self,
        record: UsageRecord,
        conn: Optional[sqlite3.Connection] = None
    ) -> UsageRecord:
        """Append a record to the ledger.

        When ``conn`` is given the insert joins the caller's open
        transaction and is committed or rolled back with it.

        Args:
            record: The usage record to append
            conn: Optional connection with an open transaction

        Returns:
            The stored record, carrying its database id
        """
        if conn is not None:
            return self._insert(conn, record)

        own_conn = get_connection(self.db_path)
        try:
            return self._insert(own_conn, record)
        finally:
            own_conn.close()

    def sum_characters(
        self,
        user_id: str,
        service_type: ServiceType,
        billing_month: str,
        conn: Optional[sqlite3.Connection] = None
    ) -> int:
        """Total characters billed to a user for one service in one month.

        Args:
            user_id: Account identifier
            service_type: Metered service
            billing_month: ``YYYY-MM`` bucket
            conn: Optional connection to read through (e.g. inside a transaction)

        Returns:
            Sum of character counts, 0 when no records match
        """
        query = """
            SELECT COALESCE(SUM(character_count), 0)
            FROM usage_record
            WHERE user_id = ? AND service_type = ? AND billing_month = ?
        """
        params = (user_id, service_type.value, billing_month)

        if conn is not None:
            return int(conn.execute(query, params).fetchone()[0])

        own_conn = get_connection(self.db_path)
        try:
            return int(own_conn.execute(query, params).fetchone()[0])
        finally:
            own_conn.close()

    def records_for(
        self,
        user_id: str,
        billing_month: Optional[str] = None,
        service_type: Optional[ServiceType] = None,
        limit: int = 1000
    ) -> List[UsageRecord]:
        """List a user's records, newest first.

        Args:
            user_id: Account identifier
            billing_month: Optional ``YYYY-MM`` filter
            service_type: Optional service filter
            limit: Maximum number of records to return

        Returns:
            List of usage records ordered by insertion (newest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_RECORD_COLUMNS} FROM usage_record WHERE user_id = ?"
            params = [user_id]

            if billing_month:
                query += " AND billing_month = ?"
                params.append(billing_month)
            if service_type is not None:
                query += " AND service_type = ?"
                params.append(service_type.value)

            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [_row_to_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def total_cost_cents(self, user_id: str, billing_month: str) -> int:
        """Sum of cost_cents billed to a user in one month."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                SELECT COALESCE(SUM(cost_cents), 0)
                FROM usage_record
                WHERE user_id = ? AND billing_month = ?
                """,
                (user_id, billing_month)
            )
            return int(cursor.fetchone()[0])
        finally:
            conn.close()

    @staticmethod
    def _insert(conn: sqlite3.Connection, record: UsageRecord) -> UsageRecord:
        cursor = conn.execute("""
            INSERT INTO usage_record
            (user_id, service_type, resource_id, character_count,
             cost_cents, was_overage, billing_month, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.user_id,
            record.service_type.value,
            record.resource_id,
            record.character_count,
            record.cost_cents,
            int(record.was_overage),
            record.billing_month,
            record.created_at.isoformat()
        ))
        return UsageRecord(
            id=cursor.lastrowid,
            user_id=record.user_id,
            service_type=record.service_type,
            resource_id=record.resource_id,
            character_count=record.character_count,
            cost_cents=record.cost_cents,
            was_overage=record.was_overage,
            billing_month=record.billing_month,
            created_at=record.created_at,
        )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the user_account and usage_record tables if they don't exist.

    usage_record is an append-only ledger for immutable billing events.
    No UPDATE or DELETE operations should ever be performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS user_account (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                subscription_tier TEXT NOT NULL DEFAULT 'free',
                is_privileged INTEGER NOT NULL DEFAULT 0,
                monthly_audio_characters INTEGER NOT NULL DEFAULT 0,
                monthly_translation_characters INTEGER NOT NULL DEFAULT 0,
                monthly_reset_date TEXT,
                current_month_overage_charges INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL REFERENCES user_account(id),
                service_type TEXT NOT NULL,
                resource_id TEXT NOT NULL,
                character_count INTEGER NOT NULL,
                cost_cents INTEGER NOT NULL DEFAULT 0,
                was_overage INTEGER NOT NULL DEFAULT 0,
                billing_month TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_usage_record_user_month
            ON usage_record (user_id, service_type, billing_month)
        """)
        conn.execute("COMMIT")
    finally:
        conn.close()
