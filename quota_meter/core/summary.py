"""
Usage summary reporting.

Combines the account's tier with its rolling counters for display.
"""

from dataclasses import dataclass

from .tiers import TIER_CATALOG, Tier, TierCatalog
from quota_meter.storage.db import DEFAULT_DB_PATH
from quota_meter.storage.models import ServiceType
from quota_meter.storage.users import UserStore


@dataclass(frozen=True)
class UsageSummary:
    """A user's plan and month-to-date consumption."""
    tier: Tier
    audio_usage: int
    audio_limit: int
    translation_usage: int
    translation_limit: int
    current_overage_charges: int  # cents


def get_user_usage_summary(
    user_id: str,
    db_path: str = DEFAULT_DB_PATH,
    catalog: TierCatalog = TIER_CATALOG
) -> UsageSummary:
    """Summarize a user's plan and usage.

    A pure read of the stored counters. Month rollover is applied only
    when usage is recorded, so right after a month boundary this may
    still show the previous month's figures.

    Raises:
        UserNotFoundError: If the user does not exist
    """
    user = UserStore(db_path).get_user(user_id)
    tier = catalog.get_tier(user.subscription_tier)

    return UsageSummary(
        tier=tier,
        audio_usage=user.characters_used(ServiceType.AUDIOBOOK),
        audio_limit=tier.audio_character_limit,
        translation_usage=user.characters_used(ServiceType.TRANSLATION),
        translation_limit=tier.translation_character_limit,
        current_overage_charges=user.current_month_overage_charges,
    )
