"""
Subscription manager.

Single entry point bundling the quota operations for one database.
"""

from datetime import datetime
from typing import Optional, Union

from .quota import QuotaDecision, can_perform_action
from .recorder import UsageCommit, commit_usage, record_usage
from .summary import UsageSummary, get_user_usage_summary
from .tiers import TIER_CATALOG, Tier, TierCatalog
from quota_meter.storage.db import DEFAULT_DB_PATH
from quota_meter.storage.models import ServiceType, UsageRecord

ServiceArg = Union[ServiceType, str]


class SubscriptionManager:
    """Quota checks, usage recording and summaries bound to one database.

    The ``now`` arguments exist for deterministic clocks in tests and
    batch reconciliation; request handlers leave them unset.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, catalog: TierCatalog = TIER_CATALOG):
        self.db_path = db_path
        self.catalog = catalog

    def can_perform_action(
        self,
        user_id: str,
        service_type: ServiceArg,
        character_count: int,
        now: Optional[datetime] = None
    ) -> QuotaDecision:
        return can_perform_action(
            user_id, service_type, character_count,
            db_path=self.db_path, catalog=self.catalog, now=now
        )

    def record_usage(
        self,
        user_id: str,
        service_type: ServiceArg,
        resource_id: str,
        character_count: int,
        cost_cents: int,
        was_overage: bool,
        now: Optional[datetime] = None
    ) -> UsageRecord:
        return record_usage(
            user_id, service_type, resource_id, character_count,
            cost_cents, was_overage, db_path=self.db_path, now=now
        )

    def commit_usage(
        self,
        user_id: str,
        service_type: ServiceArg,
        resource_id: str,
        character_count: int,
        now: Optional[datetime] = None
    ) -> UsageCommit:
        return commit_usage(
            user_id, service_type, resource_id, character_count,
            db_path=self.db_path, catalog=self.catalog, now=now
        )

    def get_user_usage_summary(self, user_id: str) -> UsageSummary:
        return get_user_usage_summary(user_id, db_path=self.db_path, catalog=self.catalog)

    def get_tier_info(self, tier_name: Optional[str]) -> Tier:
        return self.catalog.get_tier(tier_name)


# Global manager instance
_default_manager: Optional[SubscriptionManager] = None


def get_manager(db_path: str = DEFAULT_DB_PATH) -> SubscriptionManager:
    """Get the process-wide SubscriptionManager.

    Args:
        db_path: Path to SQLite database file, used on first call only

    Returns:
        An instance of SubscriptionManager
    """
    global _default_manager
    if _default_manager is None:
        _default_manager = SubscriptionManager(db_path)
    return _default_manager
