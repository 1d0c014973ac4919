import argparse
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml
from dotenv import load_dotenv

from .mackerel import DEFAULT_BASE_URL

logger = logging.getLogger("forwarder.config")

# environment variable -> config field
ENV_OVERRIDES = {
    "MACKEREL_APIURL": "base_url",
    "MACKEREL_APIKEY": "api_key",
    "MACKEREL_APIKEY_PARAMETER": "api_key_parameter",
    "MACKEREL_APIKEY_WITH_DECRYPT": "api_key_with_decrypt",
    "FORWARD_LOG_LEVEL": "log_level",
    "FORWARD_SETTINGS": "settings",
    "AWS_REGION": "aws_region",
}


@dataclass
class ForwarderConfig:
    """Forwarder configuration with defaults"""
    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    api_key_parameter: Optional[str] = None
    api_key_with_decrypt: bool = False
    log_level: str = "WARNING"
    # forward settings: JSON array text or a list of spec objects
    settings: Union[str, List[Any], None] = None
    settings_file: Optional[str] = None
    interval: int = 60
    timeout: float = 60.0
    once: bool = False
    aws_region: Optional[str] = None

    @classmethod
    def from_file(cls, config_path: Path) -> "ForwarderConfig":
        """Load configuration from YAML file, unknown keys are ignored"""
        if not config_path.exists():
            logger.debug("Config file not found: %s, using defaults", config_path)
            return cls()

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        logger.debug("Loaded config from %s: %s", config_path, sorted(data))
        known_fields = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known_fields})

    def override_with_env(self) -> "ForwarderConfig":
        """Override config with environment variables (and .env) if set"""
        load_dotenv()
        for env, field_name in ENV_OVERRIDES.items():
            value = os.getenv(env)
            if not value:
                continue
            if field_name == "api_key_with_decrypt":
                self.api_key_with_decrypt = True
            else:
                setattr(self, field_name, value)
        self.log_level = self.log_level.upper()
        return self

    def override_with_args(self, args: argparse.Namespace) -> "ForwarderConfig":
        """Override config with command line arguments if provided"""
        # Only override if explicitly provided - preserves config file values
        self.settings_file = args.settings_file if args.settings_file is not None else self.settings_file
        self.interval = args.interval if args.interval is not None else self.interval
        self.timeout = args.timeout if args.timeout is not None else self.timeout
        self.log_level = args.log_level if args.log_level is not None else self.log_level
        self.once = args.once or self.once
        return self

    def load_settings(self) -> Union[str, List[Any]]:
        """Forward settings payload; settings_file wins over inline settings"""
        if self.settings_file:
            return Path(self.settings_file).read_text()
        if self.settings is None:
            return []
        return self.settings
