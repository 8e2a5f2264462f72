"""
Shared pytest fixtures for Desist tests.

Provides:
- ManualScheduler: virtual clock with call_later, advanced by hand
- Fakes for every panic-mode collaborator
- An isolated DESIST_HOME per test
"""

import asyncio
import heapq
import itertools
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from desist.interfaces import Location, Recipient, Session
from desist.lifecycle import AppLifecycle
from desist.sequencer import PanicActionSequencer, PanicSettings


# ============================================================================
# Virtual time
# ============================================================================

class ManualHandle:
    def __init__(self, when: float, callback: Callable, args: tuple):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler with a clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self._queue: List = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable, *args: Any) -> ManualHandle:
        handle = ManualHandle(self.now + delay, callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in order."""
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = when
            handle.callback(*handle.args)
        self.now = target

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def lifecycle() -> AppLifecycle:
    return AppLifecycle()


@pytest.fixture(autouse=True)
def desist_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.desist"""
    home = tmp_path / "desist-home"
    monkeypatch.setenv("DESIST_HOME", str(home))
    return home


# ============================================================================
# Collaborator fakes
# ============================================================================

class FakeStore:
    def __init__(self, name: str, calls: List[str], data: Optional[Dict[str, Any]] = None):
        self.name = name
        self.calls = calls
        self.data = dict(data or {})
        self.fail_clear = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def remove(self, key):
        self.calls.append(f"{self.name}.remove:{key}")
        self.data.pop(key, None)

    async def clear(self):
        self.calls.append(f"{self.name}.clear")
        if self.fail_clear:
            raise OSError("disk full")
        self.data.clear()

    async def list_keys(self):
        return list(self.data)


class FakeAuth:
    def __init__(self, calls: List[str]):
        self.calls = calls
        self.fail = False
        self.signed_out = 0

    async def sign_out(self):
        self.calls.append("auth.sign_out")
        if self.fail:
            raise ConnectionError("backend down")
        self.signed_out += 1
        return True

    async def get_current_session(self):
        return None if self.signed_out else Session(access_token="token")


class FakeLocation:
    def __init__(self, calls: List[str], location: Optional[Location] = Location(40.7128, -74.0060)):
        self.calls = calls
        self.location = location
        self.error: Optional[Exception] = None
        self.delay = 0.0

    async def get_current_position(self):
        self.calls.append("location.get")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.location


class FakeDispatcher:
    def __init__(self, calls: List[str]):
        self.calls = calls
        self.sent: List[tuple] = []
        self.fail_for: set = set()
        self.fail_all = False
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_to_recipient(self, recipient, payload):
        self.calls.append(f"dispatch:{recipient.id}")
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.fail_all or recipient.id in self.fail_for:
                raise ConnectionError(f"send to {recipient.id} failed")
            self.sent.append((recipient, payload))
            return True
        finally:
            self.in_flight -= 1


class FakeDirectory:
    def __init__(self, calls: List[str], recipients: Optional[List[Recipient]] = None):
        self.calls = calls
        self.recipients = recipients if recipients is not None else [
            Recipient(id="a", name="Alex", phone="+15550001"),
            Recipient(id="b", name="Blair", phone="+15550002"),
            Recipient(id="c", name="Casey", phone="+15550003"),
        ]
        self.queries: List[tuple] = []

    async def recipients_near(self, location, radius_km):
        self.calls.append("directory.query")
        self.queries.append((location, radius_km))
        return list(self.recipients)


class FakeRecorder:
    def __init__(self, calls: List[str]):
        self.calls = calls
        self.records = []
        self.fail = False

    async def create(self, record):
        self.calls.append("recorder.create")
        if self.fail:
            raise ConnectionError("insert failed")
        self.records.append(record)
        return len(self.records)


class FakeProcess:
    def __init__(self, calls: List[str], supported: bool = True):
        self.calls = calls
        self.supported = supported
        self.terminated = 0

    def terminate(self):
        self.calls.append("process.terminate")
        self.terminated += 1


class Collaborators:
    """Everything a sequencer needs, sharing one call log."""

    def __init__(self):
        self.calls: List[str] = []
        self.cache = FakeStore("cache", self.calls, {"feed": [1, 2], "drafts": "x"})
        self.session_store = FakeStore("session", self.calls, {"session": {"access_token": "t"}})
        self.auth = FakeAuth(self.calls)
        self.location = FakeLocation(self.calls)
        self.dispatcher = FakeDispatcher(self.calls)
        self.directory = FakeDirectory(self.calls)
        self.recorder = FakeRecorder(self.calls)
        self.process = FakeProcess(self.calls)
        self.sleeps: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.calls.append(f"sleep:{seconds}")
        self.sleeps.append(seconds)
        await asyncio.sleep(0)

    def sequencer(self, **kwargs) -> PanicActionSequencer:
        kwargs.setdefault("settings", PanicSettings(
            location_timeout_seconds=0.2,
            settle_delay_seconds=0.5,
            settle_timeout_seconds=0.2,
            exit_delay_seconds=1.0,
        ))
        return PanicActionSequencer(
            cache=self.cache,
            session_store=self.session_store,
            auth=self.auth,
            location_provider=self.location,
            dispatcher=self.dispatcher,
            directory=self.directory,
            recorder=self.recorder,
            process=self.process,
            sleep=self.sleep,
            **kwargs
        )


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators()
