import json
import os
import copy
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

CONFIG_FILE = os.environ.get(
    'KPI_CONFIG_FILE',
    os.path.join(os.path.dirname(__file__), 'config.json')
)

QUARTERLY_EQUIPMENT = [
    "harness", "portable", "lifeline", "lifering", "lifevest", "welding", "cable",
    "fan", "light", "cctv", "equipment", "rescue", "socket", "electric",
]

DEFAULT_CONFIG = {
    "equipment_periods": {
        "default": {equipment_type: "quarterly" for equipment_type in QUARTERLY_EQUIPMENT}
    },
    "mixer_types": ["mixer", "mixertsm", "mixertrainer", "mixerweek"],
    "bu_sites": {}
}


class ConfigError(Exception):
    """Raised when the configuration file exists but cannot be read."""


@dataclass
class KpiConfig:
    """Per-request view of the configuration for one business unit."""
    period_map: Dict[str, str] = field(default_factory=dict)
    mixer_types: Tuple[str, ...] = ()
    sites: List[str] = field(default_factory=list)

    @classmethod
    def for_business_unit(cls, business_unit: str, config: dict = None) -> 'KpiConfig':
        config = config if config is not None else get_config()
        periods = config.get("equipment_periods", {})
        period_map = {k.lower(): v.lower() for k, v in periods.get("default", {}).items()}
        period_map.update({k.lower(): v.lower() for k, v in periods.get(business_unit, {}).items()})
        return cls(
            period_map=period_map,
            mixer_types=tuple(t.lower() for t in config.get("mixer_types", [])),
            sites=list(config.get("bu_sites", {}).get(business_unit, [])),
        )


def get_config() -> dict:
    """Loads the configuration from the JSON file, using defaults if the file doesn't exist."""
    if not os.path.exists(CONFIG_FILE):
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with open(CONFIG_FILE, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read configuration {CONFIG_FILE}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"Configuration {CONFIG_FILE} must hold a JSON object")
    return config


def set_config(config: dict):
    """Saves the configuration to the JSON file."""
    with open(CONFIG_FILE, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=4, ensure_ascii=False)
