"""
Configuration management and loading.

Loads subscription tier catalogs from YAML with strict validation.
"""

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict

import yaml

from quota_meter.core.tiers import Tier, TierCatalog

_REQUIRED_TIER_KEYS = {
    'name',
    'price',
    'audio_character_limit',
    'translation_character_limit',
    'overage_rate_audio',
    'overage_rate_translation',
}
_ALLOWED_TIER_KEYS = _REQUIRED_TIER_KEYS | {'features'}


def load_tier_catalog(path: str) -> TierCatalog:
    """Load and validate a tier catalog from a YAML file.

    Strict validation ensures no silent misconfigurations that could
    grant unpaid usage or bill at the wrong rate.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated TierCatalog object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Tier catalog file not found: {path}")

    # Load YAML content
    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    # Validate top-level structure
    allowed_top_keys = {'tiers'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'tiers' not in raw_config:
        raise ValueError("Missing required 'tiers' section")

    tiers_data = raw_config['tiers']
    if not isinstance(tiers_data, dict) or not tiers_data:
        raise ValueError("'tiers' must be a non-empty dictionary")

    tiers: Dict[str, Tier] = {}
    for tier_key, tier_data in tiers_data.items():
        key = str(tier_key).strip().lower()
        if not key:
            raise ValueError("Tier keys cannot be empty")
        if key in tiers:
            raise ValueError(f"Duplicate tier key: {key}")
        if not isinstance(tier_data, dict):
            raise ValueError(f"Tier '{tier_key}' must be a dictionary")
        tiers[key] = _parse_tier(key, tier_data, f"tiers.{tier_key}")

    # TierCatalog enforces the free tier invariants
    return TierCatalog(tiers)


def _parse_tier(key: str, data: Dict, path: str) -> Tier:
    """Parse and validate one tier definition.

    Args:
        key: Normalized tier key
        data: Tier configuration data
        path: Path for error messages

    Returns:
        Validated Tier

    Raises:
        ValueError: If configuration is invalid
    """
    unknown_keys = set(data.keys()) - _ALLOWED_TIER_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    missing_keys = _REQUIRED_TIER_KEYS - set(data.keys())
    if missing_keys:
        raise ValueError(f"Missing required keys in {path}: {sorted(missing_keys)}")

    name = data['name']
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"'name' in {path} must be a non-empty string")

    features = data.get('features', [])
    if not isinstance(features, list) or not all(isinstance(f, str) for f in features):
        raise ValueError(f"'features' in {path} must be a list of strings")

    return Tier(
        key=key,
        name=name,
        price=_parse_count(data['price'], 'price', path),
        audio_character_limit=_parse_count(
            data['audio_character_limit'], 'audio_character_limit', path
        ),
        translation_character_limit=_parse_count(
            data['translation_character_limit'], 'translation_character_limit', path
        ),
        overage_rate_audio=_parse_rate(data['overage_rate_audio'], 'overage_rate_audio', path),
        overage_rate_translation=_parse_rate(
            data['overage_rate_translation'], 'overage_rate_translation', path
        ),
        features=tuple(features),
    )


def _parse_count(value, field: str, path: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"'{field}' in {path} must be a non-negative integer")
    return value


def _parse_rate(value, field: str, path: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"'{field}' in {path} must be a non-negative number")
    try:
        # str() keeps 1.5 as Decimal("1.5") rather than its binary expansion
        rate = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{field}' in {path} must be a non-negative number")
    if not rate.is_finite() or rate < 0:
        raise ValueError(f"'{field}' in {path} must be a non-negative number")
    return rate
