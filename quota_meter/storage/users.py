"""
User record store.

Reads the account fields the quota engine needs and applies counter
changes. Counter writes are single SQL statements so that concurrent
writers never lose an increment.
"""

import sqlite3
from datetime import datetime
from typing import Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import ServiceType, UserAccount
from quota_meter.core.tiers import TIER_CATALOG, TierCatalog


class UserNotFoundError(LookupError):
    """Raised when a user id has no account record."""

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


_COUNTER_COLUMNS = {
    ServiceType.AUDIOBOOK: "monthly_audio_characters",
    ServiceType.TRANSLATION: "monthly_translation_characters",
}


class UserStore:
    """Access to user_account rows."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_user(
        self,
        user_id: str,
        conn: Optional[sqlite3.Connection] = None
    ) -> UserAccount:
        """Load an account.

        Args:
            user_id: Account identifier
            conn: Optional connection to read through

        Returns:
            The account

        Raises:
            UserNotFoundError: If no account has this id
        """
        if conn is not None:
            return self._get_user(conn, user_id)

        own_conn = get_connection(self.db_path)
        try:
            return self._get_user(own_conn, user_id)
        finally:
            own_conn.close()

    def create_user(
        self,
        user_id: str,
        email: str,
        subscription_tier: str = "free",
        is_privileged: bool = False,
        monthly_reset_date: Optional[datetime] = None,
        catalog: TierCatalog = TIER_CATALOG
    ) -> UserAccount:
        """Provision an account with zeroed counters.

        Raises:
            ValueError: If user_id or email is empty, or the tier is unknown
            sqlite3.IntegrityError: If the id is already taken
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required and cannot be empty")
        if not email or not email.strip():
            raise ValueError("email is required and cannot be empty")
        tier = catalog.require_tier(subscription_tier)

        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO user_account
                (id, email, subscription_tier, is_privileged, monthly_reset_date)
                VALUES (?, ?, ?, ?, ?)
            """, (
                user_id,
                email,
                tier.key,
                int(is_privileged),
                monthly_reset_date.isoformat() if monthly_reset_date else None
            ))
            return self._get_user(conn, user_id)
        finally:
            conn.close()

    def set_tier(
        self,
        user_id: str,
        subscription_tier: str,
        catalog: TierCatalog = TIER_CATALOG
    ) -> UserAccount:
        """Move an account to another subscription tier.

        Raises:
            ValueError: If the tier is not in the catalog
            UserNotFoundError: If the user does not exist
        """
        tier = catalog.require_tier(subscription_tier)
        return self._set_field(user_id, "subscription_tier", tier.key)

    def set_privileged(self, user_id: str, is_privileged: bool) -> UserAccount:
        """Grant or revoke unlimited, zero-cost access."""
        return self._set_field(user_id, "is_privileged", int(is_privileged))

    @staticmethod
    def reset_month(conn: sqlite3.Connection, user_id: str, now: datetime) -> None:
        """Zero every rolling counter and stamp the reset date."""
        conn.execute("""
            UPDATE user_account
            SET monthly_audio_characters = 0,
                monthly_translation_characters = 0,
                current_month_overage_charges = 0,
                monthly_reset_date = ?
            WHERE id = ?
        """, (now.isoformat(), user_id))

    @staticmethod
    def add_usage(
        conn: sqlite3.Connection,
        user_id: str,
        service_type: ServiceType,
        character_count: int,
        overage_cents: int = 0
    ) -> None:
        """Increment a service counter and the month's overage charges."""
        column = _COUNTER_COLUMNS[service_type]
        conn.execute(f"""
            UPDATE user_account
            SET {column} = {column} + ?,
                current_month_overage_charges = current_month_overage_charges + ?
            WHERE id = ?
        """, (character_count, overage_cents, user_id))

    def _set_field(self, user_id: str, column: str, value) -> UserAccount:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE user_account SET {column} = ? WHERE id = ?",
                (value, user_id)
            )
            if cursor.rowcount == 0:
                raise UserNotFoundError(user_id)
            return self._get_user(conn, user_id)
        finally:
            conn.close()

    @staticmethod
    def _get_user(conn: sqlite3.Connection, user_id: str) -> UserAccount:
        row = conn.execute("""
            SELECT id, email, subscription_tier, is_privileged,
                   monthly_audio_characters, monthly_translation_characters,
                   monthly_reset_date, current_month_overage_charges
            FROM user_account
            WHERE id = ?
        """, (user_id,)).fetchone()
        if row is None:
            raise UserNotFoundError(user_id)

        return UserAccount(
            id=row[0],
            email=row[1],
            subscription_tier=row[2] or "",
            is_privileged=bool(row[3]),
            monthly_audio_characters=row[4] or 0,
            monthly_translation_characters=row[5] or 0,
            monthly_reset_date=datetime.fromisoformat(row[6]) if row[6] else None,
            current_month_overage_charges=row[7] or 0,
        )
