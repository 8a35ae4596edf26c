"""
Unit tests for storage layer.

Tests schema creation, ledger insertion and retrieval, and the user store.
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timezone

import pytest

from quota_meter.storage.db import get_connection, write_transaction
from quota_meter.storage.models import ServiceType, UsageRecord
from quota_meter.storage.repository import UsageLedger, initialize_schema
from quota_meter.storage.users import UserNotFoundError, UserStore


def _record(user_id="u1", service=ServiceType.AUDIOBOOK, characters=100,
            month="2025-03", cost=0, overage=False, resource="book-1"):
    return UsageRecord(
        user_id=user_id,
        service_type=service,
        resource_id=resource,
        character_count=characters,
        cost_cents=cost,
        was_overage=overage,
        billing_month=month,
        created_at=datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name IN ('usage_record', 'user_account')
                    ORDER BY name
                """)
                assert [row[0] for row in cursor.fetchall()] == ["usage_record", "user_account"]

                cursor = conn.execute("PRAGMA table_info(usage_record)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'id', 'user_id', 'service_type', 'resource_id', 'character_count',
                    'cost_cents', 'was_overage', 'billing_month', 'created_at'
                ]
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestUsageLedger:
    """Test ledger insertion and queries."""

    def setup_method(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.db")
        initialize_schema(self.db_path)
        UserStore(self.db_path).create_user("u1", "u1@example.com", "premium")
        UserStore(self.db_path).create_user("u2", "u2@example.com", "premium")
        self.ledger = UsageLedger(self.db_path)

    def teardown_method(self):
        self.temp_dir.cleanup()

    def test_insert_returns_record_with_id(self):
        stored = self.ledger.insert(_record())
        assert stored.id is not None
        assert stored.character_count == 100

        records = self.ledger.records_for("u1")
        assert len(records) == 1
        assert records[0] == stored

    def test_sum_filters_by_user_service_and_month(self):
        self.ledger.insert(_record(characters=100))
        self.ledger.insert(_record(characters=250))
        self.ledger.insert(_record(characters=999, service=ServiceType.TRANSLATION))
        self.ledger.insert(_record(characters=777, month="2025-02"))
        self.ledger.insert(_record(user_id="u2", characters=555))

        assert self.ledger.sum_characters("u1", ServiceType.AUDIOBOOK, "2025-03") == 350
        assert self.ledger.sum_characters("u1", ServiceType.TRANSLATION, "2025-03") == 999
        assert self.ledger.sum_characters("u1", ServiceType.AUDIOBOOK, "2025-02") == 777
        assert self.ledger.sum_characters("u2", ServiceType.AUDIOBOOK, "2025-03") == 555

    def test_sum_with_no_records_is_zero(self):
        assert self.ledger.sum_characters("u1", ServiceType.AUDIOBOOK, "2025-03") == 0

    def test_records_newest_first_with_filters(self):
        self.ledger.insert(_record(resource="first"))
        self.ledger.insert(_record(resource="second", service=ServiceType.TRANSLATION))
        self.ledger.insert(_record(resource="third", month="2025-04"))

        assert [r.resource_id for r in self.ledger.records_for("u1")] == [
            "third", "second", "first"
        ]
        assert [r.resource_id for r in self.ledger.records_for("u1", billing_month="2025-03")] == [
            "second", "first"
        ]
        translation = self.ledger.records_for("u1", service_type=ServiceType.TRANSLATION)
        assert [r.resource_id for r in translation] == ["second"]
        assert len(self.ledger.records_for("u1", limit=2)) == 2

    def test_total_cost(self):
        self.ledger.insert(_record(cost=8, overage=True))
        self.ledger.insert(_record(cost=4, overage=True, service=ServiceType.TRANSLATION))
        self.ledger.insert(_record(cost=100, overage=True, month="2025-02"))
        assert self.ledger.total_cost_cents("u1", "2025-03") == 12

    def test_insert_joins_open_transaction(self):
        """An insert made through a transaction disappears when it rolls back."""
        with pytest.raises(RuntimeError):
            with write_transaction(self.db_path) as conn:
                self.ledger.insert(_record(), conn=conn)
                raise RuntimeError("abort")

        assert self.ledger.records_for("u1") == []

    def test_unknown_user_violates_foreign_key(self):
        with pytest.raises(sqlite3.IntegrityError):
            self.ledger.insert(_record(user_id="ghost"))


class TestAppendOnlyNature:
    """Test that the ledger maintains append-only behavior."""

    def test_no_mutating_methods_exist(self):
        """Verify the ledger exposes no update or delete operations."""
        public = [name for name in dir(UsageLedger) if not name.startswith('_')]

        assert set(public) == {'insert', 'sum_characters', 'records_for', 'total_cost_cents'}
        for name in public:
            assert 'update' not in name.lower()
            assert 'delete' not in name.lower()
            assert 'remove' not in name.lower()
            assert 'modify' not in name.lower()

    def test_records_are_frozen(self):
        record = _record()
        with pytest.raises(AttributeError):
            record.character_count = 1


class TestUserStore:
    """Test account provisioning and lookups."""

    def setup_method(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.db")
        initialize_schema(self.db_path)
        self.users = UserStore(self.db_path)

    def teardown_method(self):
        self.temp_dir.cleanup()

    def test_create_and_get(self):
        created = self.users.create_user("u1", "u1@example.com", "studio")
        fetched = self.users.get_user("u1")

        assert created == fetched
        assert fetched.subscription_tier == "studio"
        assert fetched.is_privileged is False
        assert fetched.monthly_audio_characters == 0
        assert fetched.monthly_reset_date is None
        assert fetched.characters_used(ServiceType.TRANSLATION) == 0
        assert fetched.characters_used(ServiceType.AUDIOBOOK) == 0

    def test_duplicate_id_rejected(self):
        self.users.create_user("u1", "u1@example.com")
        with pytest.raises(sqlite3.IntegrityError):
            self.users.create_user("u1", "other@example.com")

    def test_empty_fields_rejected(self):
        with pytest.raises(ValueError, match="user_id is required"):
            self.users.create_user("", "u1@example.com")
        with pytest.raises(ValueError, match="email is required"):
            self.users.create_user("u1", " ")

    def test_get_unknown_raises(self):
        with pytest.raises(UserNotFoundError) as exc_info:
            self.users.get_user("ghost")
        assert exc_info.value.user_id == "ghost"

    def test_set_tier_and_privilege(self):
        self.users.create_user("u1", "u1@example.com")

        assert self.users.set_tier("u1", "premium").subscription_tier == "premium"
        assert self.users.set_privileged("u1", True).is_privileged is True
        assert self.users.set_privileged("u1", False).is_privileged is False

    def test_set_on_unknown_user_raises(self):
        with pytest.raises(UserNotFoundError):
            self.users.set_tier("ghost", "premium")

    def test_unknown_tier_rejected(self):
        """A mistyped tier is refused instead of silently resolving to free."""
        with pytest.raises(ValueError, match="Unknown subscription tier"):
            self.users.create_user("u1", "u1@example.com", "premuim")
        with pytest.raises(UserNotFoundError):
            self.users.get_user("u1")

        self.users.create_user("u1", "u1@example.com", "basic")
        with pytest.raises(ValueError, match="Unknown subscription tier"):
            self.users.set_tier("u1", "premuim")
        assert self.users.get_user("u1").subscription_tier == "basic"

    def test_tier_key_is_normalized(self):
        created = self.users.create_user("u1", "u1@example.com", " Premium ")
        assert created.subscription_tier == "premium"
        assert self.users.set_tier("u1", "STUDIO").subscription_tier == "studio"
