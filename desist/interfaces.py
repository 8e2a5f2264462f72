"""
Desist - Collaborator Interfaces
Shapes of the services the panic sequencer and stealth timeout talk to.

Everything here is structural (typing.Protocol): the daemon wires the
concrete implementations from this package, tests wire fakes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol


# ============================================================
# VALUE TYPES
# ============================================================

@dataclass(frozen=True)
class Location:
    """A device position in decimal degrees."""
    latitude: float
    longitude: float

    @property
    def maps_url(self) -> str:
        return f"https://maps.google.com/?q={self.latitude},{self.longitude}"


@dataclass
class Recipient:
    """Someone who receives an emergency alert."""
    id: str
    name: str
    phone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    custom_message: Optional[str] = None
    priority: int = 100
    active: bool = True


@dataclass
class Session:
    """An authenticated session as seen locally."""
    access_token: str
    user_id: Optional[str] = None
    expires_at: Optional[str] = None


@dataclass
class IncidentRecord:
    """Structured description of a panic activation."""
    incident_type: str
    description: str
    trigger: str
    created_at: str
    location: Optional[Location] = None
    alerts_sent: int = 0
    alerts_failed: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class AppState(Enum):
    """App lifecycle transitions."""
    FOREGROUND = "foreground"
    BACKGROUND = "background"


# ============================================================
# PROTOCOLS
# ============================================================

class PersistentKeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def list_keys(self) -> List[str]: ...


class AuthService(Protocol):
    async def sign_out(self) -> bool: ...

    async def get_current_session(self) -> Optional[Session]: ...


class LocationProvider(Protocol):
    async def get_current_position(self) -> Location: ...


class NotificationDispatcher(Protocol):
    async def send_to_recipient(self, recipient: Recipient, payload: Dict[str, Any]) -> bool: ...


class RecipientDirectory(Protocol):
    async def recipients_near(
        self,
        location: Optional[Location],
        radius_km: float
    ) -> List[Recipient]: ...


class IncidentRecorder(Protocol):
    async def create(self, record: IncidentRecord) -> Any: ...


class AppLifecycleObserver(Protocol):
    def subscribe(self, handler: Callable[[AppState], None]) -> Callable[[], None]: ...


class ProcessController(Protocol):
    supported: bool

    def terminate(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """
    Anything with a monotonic clock and deferred callbacks.
    A running asyncio event loop satisfies this.
    """

    def time(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...
