"""
Subscription tier catalog.

Holds the fixed table of plans with their monthly quotas and overage rates.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Tuple

from quota_meter.storage.models import ServiceType

logger = logging.getLogger(__name__)

DEFAULT_TIER = "free"


@dataclass(frozen=True)
class Tier:
    """A subscription plan.

    Overage rates are in cents per 1000 characters.
    """
    key: str
    name: str
    price: int  # Monthly price in dollars
    audio_character_limit: int
    translation_character_limit: int
    overage_rate_audio: Decimal
    overage_rate_translation: Decimal
    features: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Validate quotas and rates are non-negative."""
        if self.price < 0:
            raise ValueError("price cannot be negative")
        if self.audio_character_limit < 0:
            raise ValueError("audio_character_limit cannot be negative")
        if self.translation_character_limit < 0:
            raise ValueError("translation_character_limit cannot be negative")
        if self.overage_rate_audio < 0:
            raise ValueError("overage_rate_audio cannot be negative")
        if self.overage_rate_translation < 0:
            raise ValueError("overage_rate_translation cannot be negative")

    def character_limit(self, service_type: ServiceType) -> int:
        """Monthly character quota for a service."""
        if service_type is ServiceType.AUDIOBOOK:
            return self.audio_character_limit
        return self.translation_character_limit

    def overage_rate(self, service_type: ServiceType) -> Decimal:
        """Overage rate for a service, in cents per 1000 characters."""
        if service_type is ServiceType.AUDIOBOOK:
            return self.overage_rate_audio
        return self.overage_rate_translation

    def offers(self, service_type: ServiceType) -> bool:
        """Whether the plan includes any quota for a service."""
        return self.character_limit(service_type) > 0


@dataclass(frozen=True)
class TierCatalog:
    """Fixed table of subscription tiers keyed by tier name."""
    tiers: Dict[str, Tier]

    def __post_init__(self):
        """The free tier must exist and must not allow paid usage."""
        free = self.tiers.get(DEFAULT_TIER)
        if free is None:
            raise ValueError(f"Tier catalog must define a '{DEFAULT_TIER}' tier")
        for service in ServiceType:
            if free.character_limit(service) != 0 or free.overage_rate(service) != 0:
                raise ValueError(
                    f"'{DEFAULT_TIER}' tier must have zero quota and zero overage rate"
                )

    def get_tier(self, tier_name: Optional[str]) -> Tier:
        """Get a tier by name.

        Unknown or unset names resolve to the free tier rather than
        raising, so a blank or legacy tier string on an account never
        grants more than the free plan.

        Args:
            tier_name: Tier key as stored on the account

        Returns:
            The matching Tier, or the free tier
        """
        key = (tier_name or "").strip().lower()
        tier = self.tiers.get(key)
        if tier is None:
            if key:
                logger.warning("Unknown subscription tier %r, using '%s'", tier_name, DEFAULT_TIER)
            return self.tiers[DEFAULT_TIER]
        return tier

    def require_tier(self, tier_name: str) -> Tier:
        """Get a tier by name, raising on names the catalog does not define.

        Raises:
            ValueError: If the name is not a tier key
        """
        key = (tier_name or "").strip().lower()
        if key not in self.tiers:
            raise ValueError(
                f"Unknown subscription tier: {tier_name!r}. "
                f"Valid tiers: {', '.join(self.tiers)}"
            )
        return self.tiers[key]


TIER_CATALOG = TierCatalog({
    "free": Tier(
        key="free",
        name="Free",
        price=0,
        audio_character_limit=0,
        translation_character_limit=0,
        overage_rate_audio=Decimal("0"),
        overage_rate_translation=Decimal("0"),
        features=(
            "Basic writing tools",
            "Project management",
            "Export to DOCX/PDF",
        ),
    ),
    "basic": Tier(
        key="basic",
        name="Basic",
        price=7,
        audio_character_limit=100_000,
        translation_character_limit=0,
        overage_rate_audio=Decimal("1.5"),
        overage_rate_translation=Decimal("0"),
        features=(
            "All Free features",
            "AI writing assistance",
            "OpenAI TTS Audiobooks (100k chars/month)",
            "6 high-quality voices",
            "Character development",
            "Historical research",
        ),
    ),
    "premium": Tier(
        key="premium",
        name="Premium",
        price=15,
        audio_character_limit=200_000,
        translation_character_limit=100_000,
        overage_rate_audio=Decimal("1.5"),
        overage_rate_translation=Decimal("2.0"),
        features=(
            "All Basic features",
            "Premium OpenAI TTS Audiobooks (200k chars/month)",
            "Standard & HD quality options",
            "All 6 OpenAI voices",
            "Translation services (100k chars/month)",
            "Advanced AI tools",
        ),
    ),
    "studio": Tier(
        key="studio",
        name="Studio",
        price=35,
        audio_character_limit=500_000,
        translation_character_limit=250_000,
        overage_rate_audio=Decimal("1.5"),
        overage_rate_translation=Decimal("2.0"),
        features=(
            "All Premium features",
            "Studio Quality OpenAI TTS Audiobooks (500k chars/month)",
            "All OpenAI TTS voice options with HD quality",
            "Unlimited standard quality, HD quality included",
            "Premium translation services (250k chars/month)",
            "Priority support",
            "Advanced literary analysis",
        ),
    ),
})


def get_tier(tier_name: Optional[str], catalog: TierCatalog = TIER_CATALOG) -> Tier:
    """Resolve a tier name against a catalog, defaulting to free."""
    return catalog.get_tier(tier_name)
