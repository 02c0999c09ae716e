import json
import logging
import os
from dataclasses import dataclass, asdict, field
from typing import Dict, List, Optional, Any

from link_checker.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = "config.json"

# Values shipped in the example config that must be replaced before a real run
PLACEHOLDER_EMAIL = "YOUR_EMAIL_HERE"
PLACEHOLDER_WEBHOOK = "SLACK_WEBHOOK_URL"
PLACEHOLDER_REPORT_URL = "YOUR_REPORT_URL"

DEFAULT_LABEL = "linkChecker_complete"

DEFAULTS = {
    "data_directory": "output",
    "label": DEFAULT_LABEL,
    "checkpoint_flush_every": 100,
    "preview": False,
    "recipient_emails": [],
    "slack_webhook_url": "",
    "report_url": "",
    "account_conditions": {},
    "throttle_seconds": 0,
    "timeout_buffer_seconds": 120,
    "execution_time_limit_seconds": 1800,
    "max_concurrent_accounts": 8,
    "account_batch_size": 50,
    "page_limit": 50000,
    "request_timeout": 30,
    "user_agent": "LinkChecker/1.0",
}

QUOTA_DEFAULTS = {
    "init_sleep_seconds": 0.15,
    "backoff_factor": 1.5,
    "max_tries": 3,
    "max_requests_per_second": 10,
    "daily_fetch_quota": 20000,
}


def to_bool(value: Any) -> bool:
    """Read a config flag written either as a JSON boolean or as 'Yes'/'No'."""
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "1")
    return bool(value)


@dataclass(frozen=True)
class Options:
    """Cycle-wide scanning policy. Read once per invocation, never mutated."""
    check_ad_urls: bool = True
    check_keyword_urls: bool = True
    check_sitelink_urls: bool = True
    check_paused_ads: bool = False
    check_paused_keywords: bool = False
    check_paused_sitelinks: bool = False
    valid_codes: List[int] = field(default_factory=lambda: [200])
    email_each_run: bool = False
    email_non_errors: bool = False
    email_on_completion: bool = True
    save_all_urls: bool = False
    frequency_days: float = 7

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Options":
        data = data or {}
        flags = {}
        for name in (
            "check_ad_urls", "check_keyword_urls", "check_sitelink_urls",
            "check_paused_ads", "check_paused_keywords", "check_paused_sitelinks",
            "email_each_run", "email_non_errors", "email_on_completion",
            "save_all_urls",
        ):
            if name in data:
                flags[name] = to_bool(data[name])
        if "valid_codes" in data:
            # Blank cells are dropped, the rest must be integers
            flags["valid_codes"] = [int(c) for c in data["valid_codes"] if c not in (None, "")]
        if "frequency_days" in data:
            flags["frequency_days"] = float(data["frequency_days"])
        return cls(**flags)

    def is_valid_code(self, response_code: Any) -> bool:
        return response_code in self.valid_codes

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, payload: str) -> "Options":
        return cls(**json.loads(payload))


def load_config(path: str = CONFIG_FILE_PATH) -> Optional[Dict[str, Any]]:
    """Loads the configuration from a JSON file and fills in defaults."""
    if not os.path.exists(path):
        logger.error(f"Configuration file not found: {path}")
        return None
    try:
        with open(path, 'r') as f:
            config_data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {path}: {e}")
        return None
    logger.info(f"Successfully loaded configuration from {path}")
    if not validate_config(config_data):
        return None
    return {**DEFAULTS, **config_data}


def validate_config(config: Dict[str, Any]) -> bool:
    """Validates the structure and content of the configuration."""
    if not isinstance(config, dict):
        logger.error("Configuration must be a dictionary.")
        return False

    inventory = config.get("inventory_file")
    if not isinstance(inventory, str) or not inventory.strip():
        logger.error("'inventory_file' key is missing or not a non-empty string.")
        return False

    emails = config.get("recipient_emails") or []
    if not isinstance(emails, list):
        logger.error("'recipient_emails' must be a list.")
        return False
    if emails and emails[0] == PLACEHOLDER_EMAIL:
        logger.error("Please either specify a valid email address or clear the 'recipient_emails' field.")
        return False

    if config.get("slack_webhook_url") == PLACEHOLDER_WEBHOOK:
        logger.error("Please specify a valid Slack webhook URL or clear the 'slack_webhook_url' field.")
        return False

    if config.get("report_url") == PLACEHOLDER_REPORT_URL:
        logger.error("Please specify a valid report URL or clear the 'report_url' field.")
        return False

    options = config.get("options", {})
    if not isinstance(options, dict):
        logger.error("'options' must be a dictionary.")
        return False
    try:
        Options.from_dict(options)
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid value in 'options': {e}")
        return False

    if "quota" in config and not isinstance(config["quota"], dict):
        logger.error("'quota' must be a dictionary.")
        return False

    if not config.get("slack_webhook_url"):
        logger.warning("'slack_webhook_url' is empty. No notifications will be sent.")

    logger.info("Configuration validation successful.")
    return True


def require_config(path: str = CONFIG_FILE_PATH) -> Dict[str, Any]:
    """Load and validate the configuration, raising ConfigError if unusable."""
    config = load_config(path)
    if config is None:
        raise ConfigError(f"Failed to load or validate configuration from {path}")
    return config


def get_quota_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Probe and fetch quota settings merged over their defaults."""
    return {**QUOTA_DEFAULTS, **config.get("quota", {})}


def get_account_conditions(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Account selection conditions.

    {
        "account_conditions": {
            "account_ids": ["123-456-7890"],
            "min_cost": 0
        }
    }

    min_cost keeps accounts whose 30-day cost is strictly above it; null disables.
    """
    defaults = {"account_ids": [], "min_cost": 0}
    return {**defaults, **(config.get("account_conditions") or {})}
