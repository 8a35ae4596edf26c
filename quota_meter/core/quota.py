"""
Quota evaluation.

Decides whether a metered action may proceed and what it will cost.
This module never writes: it is safe to call repeatedly for cost
estimates before the action is performed.

Decision Order:
1. Privileged accounts - unlimited, zero-cost access
2. Feature gating - tiers without quota for the service are refused
3. Quota split - in-quota characters are free, the rest is overage
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .billing import billing_month, calculate_overage_cost, utc_now
from .tiers import TIER_CATALOG, Tier, TierCatalog
from quota_meter.storage.db import DEFAULT_DB_PATH, get_connection
from quota_meter.storage.models import ServiceType, UserAccount
from quota_meter.storage.repository import UsageLedger
from quota_meter.storage.users import UserStore

logger = logging.getLogger(__name__)

UNLIMITED_QUOTA = 999_999_999


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota check. Costs are in cents."""
    can_proceed: bool
    within_limit: bool
    estimated_cost: int
    overage_cost: int
    remaining_quota: int
    within_limit_characters: int = 0
    overage_characters: int = 0


def evaluate_quota(
    user: UserAccount,
    tier: Tier,
    service_type: ServiceType,
    character_count: int,
    already_used: int
) -> QuotaDecision:
    """Pure quota decision for one request.

    Args:
        user: Account making the request
        tier: The account's effective tier
        service_type: Metered service
        character_count: Characters the action will consume
        already_used: Characters already billed this month for the service

    Returns:
        QuotaDecision for the request

    Raises:
        ValueError: If character_count is negative
    """
    if character_count < 0:
        raise ValueError("character_count cannot be negative")

    if user.is_privileged:
        return QuotaDecision(
            can_proceed=True,
            within_limit=True,
            estimated_cost=0,
            overage_cost=0,
            remaining_quota=UNLIMITED_QUOTA,
            within_limit_characters=character_count,
            overage_characters=0,
        )

    limit = tier.character_limit(service_type)
    if limit <= 0:
        return QuotaDecision(
            can_proceed=False,
            within_limit=False,
            estimated_cost=0,
            overage_cost=0,
            remaining_quota=0,
        )

    remaining_quota = max(0, limit - already_used)
    within_limit_characters = min(character_count, remaining_quota)
    overage_characters = character_count - within_limit_characters

    overage_cost = calculate_overage_cost(overage_characters, tier.overage_rate(service_type))

    # Pay-as-you-go beyond quota is uncapped for any tier that offers the service
    return QuotaDecision(
        can_proceed=True,
        within_limit=overage_characters == 0,
        estimated_cost=overage_cost,
        overage_cost=overage_cost,
        remaining_quota=remaining_quota,
        within_limit_characters=within_limit_characters,
        overage_characters=overage_characters,
    )


def decide_with_connection(
    conn: sqlite3.Connection,
    user_id: str,
    service_type: ServiceType,
    character_count: int,
    catalog: TierCatalog,
    now: datetime
) -> QuotaDecision:
    """Load the account and its month-to-date usage through ``conn`` and decide.

    Usage is summed from the ledger for the current billing month, so the
    decision never depends on whether the account's counters were reset.
    """
    user = UserStore().get_user(user_id, conn=conn)
    tier = catalog.get_tier(user.subscription_tier)

    already_used = 0
    if not user.is_privileged and tier.offers(service_type):
        already_used = UsageLedger().sum_characters(
            user_id, service_type, billing_month(now), conn=conn
        )

    decision = evaluate_quota(user, tier, service_type, character_count, already_used)

    if user.is_privileged:
        logger.info("Privileged access for user %s on %s", user_id, service_type.value)
    elif not decision.can_proceed:
        logger.warning(
            "User %s on tier '%s' is not eligible for %s",
            user_id, tier.key, service_type.value
        )
    return decision


def can_perform_action(
    user_id: str,
    service_type: Union[ServiceType, str],
    character_count: int,
    db_path: str = DEFAULT_DB_PATH,
    catalog: TierCatalog = TIER_CATALOG,
    now: Optional[datetime] = None
) -> QuotaDecision:
    """Check whether a user may perform a metered action.

    Read-only: storage errors propagate unchanged and no state is modified.

    Args:
        user_id: Account identifier
        service_type: Metered service (member or string value)
        character_count: Characters the action will consume
        db_path: Path to SQLite database file
        catalog: Tier catalog to resolve the account's tier against
        now: Clock override, defaults to the current UTC time

    Returns:
        QuotaDecision for the request

    Raises:
        UserNotFoundError: If the user does not exist
        ValueError: If the service type is unknown or character_count is negative
    """
    service = ServiceType.parse(service_type)
    conn = get_connection(db_path)
    try:
        return decide_with_connection(
            conn, user_id, service, character_count, catalog, now or utc_now()
        )
    finally:
        conn.close()
