"""
Migration Configuration
Loads config.yaml (optional) and merges API credentials from the environment.
Environment variables take precedence over values in the file.
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "attio": {
        "api_key": "",
        "base_url": "https://api.attio.com",
        "page_size": 200,
        "page_delay_seconds": 0.5,
        "include_calls": True,
    },
    "hubspot": {
        "access_token": "",
        "base_url": "https://api.hubapi.com",
        "page_size": 100,
        "page_delay_seconds": 0.15,
        "include_legacy_engagements": True,
        "contact_id_property": "contact_record_id_attio",
        "company_id_property": "company_record_id_attio",
        "deal_id_property": "deal_record_id_attio",
    },
    "retry": {
        "max_retries": 3,
        "base_delay_seconds": 1.0,
    },
    "migration": {
        "source_label": "Attio",
        "request_delay_seconds": 0.2,
        "match_threshold": 0.6,
        "title_weight": 0.6,
        "date_weight": 0.4,
        "fuzzy_fallback": False,
        "include_transcripts": False,
        "default_lookback_days": 7,
        "progress_every": 25,
        "snapshot_dir": "data/exports",
    },
}

ENV_OVERRIDES = {
    ("attio", "api_key"): "ATTIO_API_KEY",
    ("attio", "base_url"): "ATTIO_BASE_URL",
    ("hubspot", "access_token"): "HUBSPOT_ACCESS_TOKEN",
    ("hubspot", "base_url"): "HUBSPOT_BASE_URL",
}


@dataclass
class Config:
    """Configuration with defaults and validation"""
    raw: Dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> Dict[str, Any]:
        merged = dict(DEFAULTS.get(name, {}))
        merged.update(self.raw.get(name) or {})
        return merged

    @property
    def attio(self) -> Dict[str, Any]:
        return self._section("attio")

    @property
    def hubspot(self) -> Dict[str, Any]:
        return self._section("hubspot")

    @property
    def retry(self) -> Dict[str, Any]:
        return self._section("retry")

    @property
    def migration(self) -> Dict[str, Any]:
        return self._section("migration")

    def validate(self, require_credentials: bool = True) -> List[str]:
        """Validate configuration, returning a list of problems"""
        errors = []

        for section in self.raw:
            if section not in DEFAULTS:
                errors.append(f"Unknown section: {section}")

        if require_credentials:
            if not self.attio["api_key"]:
                errors.append("Missing attio.api_key (set ATTIO_API_KEY)")
            if not self.hubspot["access_token"]:
                errors.append("Missing hubspot.access_token (set HUBSPOT_ACCESS_TOKEN)")

        mig = self.migration
        threshold = mig["match_threshold"]
        if not isinstance(threshold, (int, float)) or not 0 <= threshold <= 1:
            errors.append("migration.match_threshold must be between 0 and 1")

        weights = (mig["title_weight"], mig["date_weight"])
        if not all(isinstance(w, (int, float)) and w >= 0 for w in weights):
            errors.append("migration.title_weight and date_weight must be non-negative numbers")
        elif abs(sum(weights) - 1.0) > 1e-9:
            errors.append("migration.title_weight + migration.date_weight must equal 1.0")

        delays = [
            ("attio.page_delay_seconds", self.attio["page_delay_seconds"]),
            ("hubspot.page_delay_seconds", self.hubspot["page_delay_seconds"]),
            ("retry.base_delay_seconds", self.retry["base_delay_seconds"]),
            ("migration.request_delay_seconds", mig["request_delay_seconds"]),
        ]
        for name, value in delays:
            if not isinstance(value, (int, float)) or value < 0:
                errors.append(f"{name} must be a non-negative number")

        max_retries = self.retry["max_retries"]
        if not isinstance(max_retries, int) or max_retries < 0:
            errors.append("retry.max_retries must be a non-negative integer")

        return errors


def load_config(path: Optional[str] = "config.yaml", env: Optional[Dict[str, str]] = None,
                require_credentials: bool = True) -> Config:
    """Load and validate configuration"""
    env = os.environ if env is None else env
    raw: Dict[str, Any] = {}

    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Config YAML must be a mapping at the top level.")
        raw = copy.deepcopy(loaded)
        logger.info(f"Configuration loaded from {path}")
    elif path:
        logger.info(f"No config file at {path}, using defaults and environment")

    for (section, key), var in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            if not isinstance(raw.get(section), dict):
                raw[section] = {}
            raw[section][key] = value

    config = Config(raw=raw)
    errors = config.validate(require_credentials=require_credentials)

    if errors:
        error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
        logger.error(error_msg)
        raise ValueError(error_msg)

    return config
