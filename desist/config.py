"""
Desist - Configuration Management
Handles ~/.desist/config.yaml with defaults.

Malformed YAML falls back to defaults. Values that parse but make no
sense (a 1-tap panic gesture, a zero-minute stealth timeout) are
rejected with ConfigurationError instead of being silently absorbed.
"""

import logging
import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import Optional, List, Dict, Any

from .errors import ConfigurationError
from .platform import SUPPORTED_PLATFORMS

logger = logging.getLogger(__name__)


# ============================================================
# PATHS
# ============================================================

def get_desist_dir() -> Path:
    """Get the Desist data directory (DESIST_HOME overrides ~/.desist)."""
    desist_dir = Path(os.getenv("DESIST_HOME", str(Path.home() / ".desist")))
    desist_dir.mkdir(parents=True, exist_ok=True)
    return desist_dir


def get_config_path() -> Path:
    """Get path to config file."""
    return get_desist_dir() / "config.yaml"


def get_cache_path() -> Path:
    """Get path to the local cache store."""
    return get_desist_dir() / "cache.json"


def get_session_path() -> Path:
    """Get path to the local session store."""
    return get_desist_dir() / "session.json"


# ============================================================
# DEFAULTS
# ============================================================

DEFAULT_ALERT_MESSAGE = "EMERGENCY: I need immediate assistance. My location: {location}"

WEBHOOK_TYPES = ("generic", "pagerduty")


# Expected YAML types per field. bool is rejected where a number is expected.
NUMBER = (int, float)

FIELD_TYPES = {
    'panic_mode_enabled': bool,
    'stealth_enabled': bool,
    'platform': str,
    'alert_message': str,
    'webhook_type': str,
    'cover_screen': str,
    'log_level': str,
    'required_taps': int,
    'tap_window_ms': int,
    'alert_concurrency': int,
    'data_retention_days': int,
    'alert_radius_km': NUMBER,
    'location_timeout_seconds': NUMBER,
    'settle_delay_seconds': NUMBER,
    'settle_timeout_seconds': NUMBER,
    'exit_delay_seconds': NUMBER,
    'stealth_timeout_minutes': NUMBER,
    'emergency_contacts': list,
}

OPTIONAL_FIELD_TYPES = {
    'webhook_url': str,
    'webhook_key': str,
    'auth_url': str,
    'auth_api_key': str,
    'home_latitude': NUMBER,
    'home_longitude': NUMBER,
}


def _type_name(expected) -> str:
    if expected is NUMBER:
        return "a number"
    return {bool: "true/false", str: "a string", int: "an integer", list: "a list"}[expected]


def _is_instance(value: Any, expected) -> bool:
    if isinstance(value, bool) and expected is not bool:
        return False
    return isinstance(value, expected)


# ============================================================
# CONFIG DATACLASS
# ============================================================

@dataclass
class DesistConfig:
    """Configuration settings for Desist."""

    # === PANIC MODE ===

    # Panic gesture is off until the user opts in
    panic_mode_enabled: bool = False

    # 'android' closes the app at the end of panic mode, 'ios' cannot
    platform: str = "android"

    # Clicks needed, and the max gap between two of them
    required_taps: int = 5
    tap_window_ms: int = 1000

    # Recipients within this radius get alerted (all of them if location is unknown)
    alert_radius_km: float = 16.0

    # Max alerts in flight at once
    alert_concurrency: int = 10

    # Bounded waits inside the panic sequence (seconds)
    location_timeout_seconds: float = 10.0
    settle_delay_seconds: float = 0.5
    settle_timeout_seconds: float = 5.0
    exit_delay_seconds: float = 1.0

    # Alert text; {location} becomes a maps link
    alert_message: str = DEFAULT_ALERT_MESSAGE

    # Emergency contacts: list of {id, name, phone, latitude, longitude, priority, ...}
    emergency_contacts: List[Dict[str, Any]] = field(default_factory=list)

    # Where alerts are POSTed (SMS gateway, Slack, PagerDuty, ...)
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"
    webhook_key: Optional[str] = None

    # Remote auth service (session invalidation)
    auth_url: Optional[str] = None
    auth_api_key: Optional[str] = None

    # Fallback position when no live location is available
    home_latitude: Optional[float] = None
    home_longitude: Optional[float] = None

    # === STEALTH MODE ===

    stealth_enabled: bool = False
    stealth_timeout_minutes: float = 5.0
    cover_screen: str = "calculator"

    # === HOUSEKEEPING ===

    # How long to keep incident records (days)
    data_retention_days: int = 30

    log_level: str = "INFO"

    def validate(self) -> None:
        """
        Check value types and ranges.

        Raises:
            ConfigurationError: on the first invalid value
        """
        self._check_types()

        if self.required_taps < 2:
            raise ConfigurationError(f"required_taps must be >= 2, got {self.required_taps}")
        if self.tap_window_ms <= 0:
            raise ConfigurationError(f"tap_window_ms must be > 0, got {self.tap_window_ms}")
        if self.stealth_timeout_minutes <= 0:
            raise ConfigurationError(
                f"stealth_timeout_minutes must be > 0, got {self.stealth_timeout_minutes}"
            )
        if self.alert_concurrency < 1:
            raise ConfigurationError(f"alert_concurrency must be >= 1, got {self.alert_concurrency}")
        if self.alert_radius_km < 0:
            raise ConfigurationError(f"alert_radius_km must be >= 0, got {self.alert_radius_km}")
        if self.platform.lower() not in SUPPORTED_PLATFORMS:
            raise ConfigurationError(f"Unknown platform '{self.platform}'")
        if self.webhook_type not in WEBHOOK_TYPES:
            raise ConfigurationError(f"Unknown webhook_type '{self.webhook_type}'")
        if (self.home_latitude is None) != (self.home_longitude is None):
            raise ConfigurationError("home_latitude and home_longitude must be set together")

    def _check_types(self) -> None:
        for name, expected in FIELD_TYPES.items():
            value = getattr(self, name)
            if not _is_instance(value, expected):
                raise ConfigurationError(f"{name} must be {_type_name(expected)}, got {value!r}")

        for name, expected in OPTIONAL_FIELD_TYPES.items():
            value = getattr(self, name)
            if value is not None and not _is_instance(value, expected):
                raise ConfigurationError(f"{name} must be {_type_name(expected)}, got {value!r}")

        for contact in self.emergency_contacts:
            if not isinstance(contact, dict):
                raise ConfigurationError(f"emergency_contacts entries must be mappings, got {contact!r}")

    @property
    def has_home_location(self) -> bool:
        return self.home_latitude is not None and self.home_longitude is not None


# ============================================================
# CONFIG LOADING
# ============================================================

def load_config(path: Optional[Path] = None) -> DesistConfig:
    """
    Load configuration from ~/.desist/config.yaml
    Falls back to defaults if file doesn't exist or can't be parsed.

    Raises:
        ConfigurationError: if a value has the wrong type or is out of range
    """
    config_path = path or get_config_path()

    if not config_path.exists():
        return DesistConfig()

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Error loading config %s: %s. Using default configuration.", config_path, e)
        return DesistConfig()

    if not isinstance(data, dict):
        logger.warning("Config %s is not a mapping. Using default configuration.", config_path)
        return DesistConfig()

    known = {f.name for f in fields(DesistConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

    config = DesistConfig(**{k: v for k, v in data.items() if k in known})
    config.validate()
    return config


def save_config(config: DesistConfig, path: Optional[Path] = None) -> None:
    """Save configuration to ~/.desist/config.yaml"""
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        # Panic mode
        'panic_mode_enabled': config.panic_mode_enabled,
        'platform': config.platform,
        'required_taps': config.required_taps,
        'tap_window_ms': config.tap_window_ms,
        'alert_radius_km': config.alert_radius_km,
        'alert_concurrency': config.alert_concurrency,
        'location_timeout_seconds': config.location_timeout_seconds,
        'settle_delay_seconds': config.settle_delay_seconds,
        'settle_timeout_seconds': config.settle_timeout_seconds,
        'exit_delay_seconds': config.exit_delay_seconds,
        'alert_message': config.alert_message,
        'emergency_contacts': config.emergency_contacts,
        'webhook_type': config.webhook_type,

        # Stealth mode
        'stealth_enabled': config.stealth_enabled,
        'stealth_timeout_minutes': config.stealth_timeout_minutes,
        'cover_screen': config.cover_screen,

        'data_retention_days': config.data_retention_days,
        'log_level': config.log_level,
    }

    # Only save optional fields if they exist
    optional = (
        'webhook_url', 'webhook_key', 'auth_url', 'auth_api_key',
        'home_latitude', 'home_longitude',
    )
    for name in optional:
        value = getattr(config, name)
        if value is not None:
            data[name] = value

    with open(config_path, 'w') as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def get_example_config() -> str:
    """Return an example config.yaml content."""
    return """# Desist Configuration
# Location: ~/.desist/config.yaml

# === PANIC MODE ===

# Rapid clicks trigger panic mode: alert contacts, record the incident,
# wipe local data and sign out.
panic_mode_enabled: false

# 'android' closes the app at the end, 'ios' leaves it signed out
platform: android

# 5 clicks, no more than 1 second apart
required_taps: 5
tap_window_ms: 1000

# Alert contacts within this many km (everyone if location is unknown)
alert_radius_km: 16

# emergency_contacts:
#   - id: "1"
#     name: "Sam"
#     phone: "+15555550100"
#     priority: 1

# Alert delivery (SMS gateway or any JSON webhook)
# webhook_url: https://example.com/alerts
# webhook_type: generic   # or pagerduty
# webhook_key: your-routing-key

# Remote session invalidation
# auth_url: https://your-project.supabase.co
# auth_api_key: your-anon-key

# Position used when no live location is available
# home_latitude: 40.7128
# home_longitude: -74.0060

# === STEALTH MODE ===

stealth_enabled: false

# Leave stealth mode after this many idle minutes
stealth_timeout_minutes: 5

# === HOUSEKEEPING ===

# Incident record retention (days)
data_retention_days: 30

log_level: INFO
"""


def create_default_config() -> None:
    """Create a default config file if it doesn't exist."""
    config_path = get_config_path()
    if not config_path.exists():
        with open(config_path, 'w') as f:
            f.write(get_example_config())
        print(f"✅ Created default config at {config_path}")


def print_config(config: DesistConfig) -> None:
    """Print current configuration."""
    print("\n📋 Current Desist Configuration:")
    print(f"   Panic mode: {'enabled' if config.panic_mode_enabled else 'disabled'}")
    print(f"   Platform: {config.platform}")
    print(f"   Gesture: {config.required_taps} clicks within {config.tap_window_ms}ms")
    print(f"   Alert radius: {config.alert_radius_km} km")
    print(f"   Emergency contacts: {len(config.emergency_contacts)}")
    print(f"   Webhook: {'configured' if config.webhook_url else 'not set'} ({config.webhook_type})")
    print(f"   Auth service: {'configured' if config.auth_url else 'not set'}")
    print(f"   Home location: {'set' if config.has_home_location else 'not set'}")
    print(f"   Stealth mode: {'enabled' if config.stealth_enabled else 'disabled'}")
    print(f"   Stealth timeout: {config.stealth_timeout_minutes} min")
    print(f"   Data retention: {config.data_retention_days} days")
    print()
