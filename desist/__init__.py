"""
Desist Daemon
Panic gesture, emergency alerts and stealth mode for the desktop.
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .gesture import GestureTriggerDetector, TriggerWindowState
from .sequencer import PanicActionSequencer, PanicReport, PanicSettings, StepResult, StepStatus
from .stealth import StealthAutoTimeout, StealthMode, TimeoutState, bind_auto_timeout
from .config import DesistConfig, load_config, get_config_path
from .errors import (
    DesistError,
    PermissionDeniedError,
    TransientIOError,
    PlatformTimeoutError,
    ConfigurationError,
)

__all__ = [
    # Gesture
    "GestureTriggerDetector",
    "TriggerWindowState",

    # Panic
    "PanicActionSequencer",
    "PanicReport",
    "PanicSettings",
    "StepResult",
    "StepStatus",

    # Stealth
    "StealthAutoTimeout",
    "StealthMode",
    "TimeoutState",
    "bind_auto_timeout",

    # Config
    "DesistConfig",
    "load_config",
    "get_config_path",

    # Errors
    "DesistError",
    "PermissionDeniedError",
    "TransientIOError",
    "PlatformTimeoutError",
    "ConfigurationError",
]
