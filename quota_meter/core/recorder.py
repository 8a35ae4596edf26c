"""
Usage recording.

Writes billable usage to the ledger and the account's rolling counters.
Callers check the quota first, perform the action, and record only once
the action is known to have succeeded.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from .billing import billing_month, utc_now
from .quota import QuotaDecision, decide_with_connection
from .tiers import TIER_CATALOG, TierCatalog
from quota_meter.storage.db import DEFAULT_DB_PATH, write_transaction
from quota_meter.storage.models import ServiceType, UsageRecord
from quota_meter.storage.repository import UsageLedger
from quota_meter.storage.users import UserStore

logger = logging.getLogger(__name__)


class UsageRecordingError(RuntimeError):
    """Raised when a completed action could not be written to the ledger.

    The billable action has already happened: callers should log, alert
    or reconcile the billing write, never repeat the action itself.
    """

    def __init__(
        self,
        message: str,
        user_id: str,
        service_type: ServiceType,
        character_count: int,
        result: Any = None
    ):
        super().__init__(message)
        self.user_id = user_id
        self.service_type = service_type
        self.character_count = character_count
        self.result = result


class ServiceNotAllowedError(Exception):
    """Raised when a tier is not eligible for the requested service."""

    def __init__(self, user_id: str, service_type: ServiceType):
        super().__init__(
            f"User {user_id} is not eligible for {service_type.value} on their current plan"
        )
        self.user_id = user_id
        self.service_type = service_type


@dataclass(frozen=True)
class UsageCommit:
    """Result of an atomic quota check and usage write."""
    decision: QuotaDecision
    record: UsageRecord


def _apply_usage(
    conn: sqlite3.Connection,
    user_id: str,
    service: ServiceType,
    resource_id: str,
    character_count: int,
    cost_cents: int,
    was_overage: bool,
    now: datetime
) -> UsageRecord:
    """Roll the month over if needed, append the record and bump counters.

    A record dated before the counters' month is ledger-only: it is
    billed to its own month and the current counters are left alone.
    """
    users = UserStore()
    user = users.get_user(user_id, conn=conn)

    month = billing_month(now)
    counter_month = (
        billing_month(user.monthly_reset_date) if user.monthly_reset_date else None
    )
    if counter_month is None or month > counter_month:
        logger.info("Monthly counters reset for user %s (billing month %s)", user_id, month)
        users.reset_month(conn, user_id, now)
        counter_month = month

    record = UsageLedger().insert(UsageRecord(
        user_id=user_id,
        service_type=service,
        resource_id=resource_id,
        character_count=character_count,
        cost_cents=cost_cents,
        was_overage=was_overage,
        billing_month=month,
        created_at=now,
    ), conn=conn)

    if month < counter_month:
        logger.info(
            "Backdated %s usage for user %s billed to %s, counters unchanged",
            service.value, user_id, month
        )
        return record

    users.add_usage(
        conn, user_id, service, character_count,
        overage_cents=cost_cents if was_overage else 0
    )
    return record


def record_usage(
    user_id: str,
    service_type: Union[ServiceType, str],
    resource_id: str,
    character_count: int,
    cost_cents: int,
    was_overage: bool,
    db_path: str = DEFAULT_DB_PATH,
    now: Optional[datetime] = None
) -> UsageRecord:
    """Record a completed billable action.

    The ledger insert, month rollover and counter increment happen in one
    transaction: either all of them are written or none is.

    Args:
        user_id: Account identifier
        service_type: Metered service (member or string value)
        resource_id: What the characters were billed against (e.g. audiobook id)
        character_count: Characters consumed
        cost_cents: Amount billed for this action, in cents
        was_overage: Whether any portion was billed as overage
        db_path: Path to SQLite database file
        now: Clock override, defaults to the current UTC time

    Returns:
        The stored UsageRecord

    Raises:
        ValueError: If arguments are invalid
        UserNotFoundError: If the user does not exist
        UsageRecordingError: If the write failed
    """
    service = ServiceType.parse(service_type)
    if character_count < 0:
        raise ValueError("character_count cannot be negative")
    if cost_cents < 0:
        raise ValueError("cost_cents cannot be negative")
    now = now or utc_now()

    try:
        with write_transaction(db_path) as conn:
            record = _apply_usage(
                conn, user_id, service, resource_id,
                character_count, cost_cents, was_overage, now
            )
    except sqlite3.Error as e:
        logger.error(
            "Failed to record %s usage of %d characters for user %s: %s",
            service.value, character_count, user_id, e
        )
        raise UsageRecordingError(
            f"Failed to record usage for user {user_id}: {e}",
            user_id=user_id,
            service_type=service,
            character_count=character_count
        ) from e

    logger.info(
        "Recorded %d %s characters for user %s (%d cents, overage=%s)",
        character_count, service.value, user_id, cost_cents, was_overage
    )
    return record


def commit_usage(
    user_id: str,
    service_type: Union[ServiceType, str],
    resource_id: str,
    character_count: int,
    db_path: str = DEFAULT_DB_PATH,
    catalog: TierCatalog = TIER_CATALOG,
    now: Optional[datetime] = None
) -> UsageCommit:
    """Price and record usage under the database write lock.

    The quota is re-evaluated inside the same transaction that writes
    the record, so concurrent requests are billed against each other's
    usage instead of a stale remaining-quota figure.

    Raises:
        ServiceNotAllowedError: If the tier does not offer the service
        UserNotFoundError: If the user does not exist
        UsageRecordingError: If the write failed
    """
    service = ServiceType.parse(service_type)
    now = now or utc_now()

    try:
        with write_transaction(db_path) as conn:
            decision = decide_with_connection(
                conn, user_id, service, character_count, catalog, now
            )
            if not decision.can_proceed:
                raise ServiceNotAllowedError(user_id, service)

            record = _apply_usage(
                conn, user_id, service, resource_id, character_count,
                decision.overage_cost, not decision.within_limit, now
            )
    except sqlite3.Error as e:
        logger.error(
            "Failed to commit %s usage of %d characters for user %s: %s",
            service.value, character_count, user_id, e
        )
        raise UsageRecordingError(
            f"Failed to record usage for user {user_id}: {e}",
            user_id=user_id,
            service_type=service,
            character_count=character_count
        ) from e

    logger.info(
        "Committed %d %s characters for user %s (%d cents, overage=%s)",
        character_count, service.value, user_id,
        record.cost_cents, record.was_overage
    )
    return UsageCommit(decision=decision, record=record)
