"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class ServiceType(Enum):
    """Metered services billed against monthly character quotas."""
    AUDIOBOOK = "audiobook"
    TRANSLATION = "translation"

    @classmethod
    def parse(cls, value: Union["ServiceType", str]) -> "ServiceType":
        """Accept a member or its string value.

        Raises:
            ValueError: If the value names no metered service
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = [service.value for service in cls]
            raise ValueError(f"Unknown service type: {value!r} (expected one of {valid})")


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one billable action.

    Append-only events that create an auditable billing ledger.
    Once written, these records must never be modified; corrections
    are made by writing new records.
    """
    user_id: str
    service_type: ServiceType
    resource_id: str
    character_count: int
    cost_cents: int
    was_overage: bool
    billing_month: str
    created_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class UserAccount:
    """Subset of the account fields the quota engine reads and updates."""
    id: str
    email: str
    subscription_tier: str = "free"
    is_privileged: bool = False
    monthly_audio_characters: int = 0
    monthly_translation_characters: int = 0
    monthly_reset_date: Optional[datetime] = None
    current_month_overage_charges: int = 0

    def characters_used(self, service_type: ServiceType) -> int:
        """Rolling counter for the given service."""
        if service_type is ServiceType.AUDIOBOOK:
            return self.monthly_audio_characters
        return self.monthly_translation_characters
