"""
Desist - Panic Action Sequencer
The one-shot emergency pipeline behind panic mode.

Order matters:
1. acquire_location    bounded wait, unknown location on failure
2. alert_recipients    fan-out, one failure never blocks the others
3. record_incident     durable record of the activation
4. clear_cache         local data wipe
5. sign_out            remote session invalidation
6. clear_session       local session wipe
7. await_settle        let sign-out side effects land
8. terminate_process   where the platform allows it

Alerts and the incident record go first because they need the session
and cache that steps 4-6 destroy. The cache is cleared before sign-out
so nothing authenticated can run against a half-cleared cache.

Every step is isolated: a failure is logged, recorded in the report and
the sequence moves on. Nothing is retried. The action is irreversible,
so a sequencer runs at most once.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

from .config import DesistConfig, DEFAULT_ALERT_MESSAGE
from .errors import PlatformTimeoutError
from .interfaces import (
    AuthService,
    IncidentRecord,
    IncidentRecorder,
    Location,
    LocationProvider,
    NotificationDispatcher,
    PersistentKeyValueStore,
    ProcessController,
    Recipient,
    RecipientDirectory,
)
from .notifications import build_alert_payload, format_alert_message

logger = logging.getLogger(__name__)


class StepStatus(Enum):
    OK = "ok"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of one pipeline step."""
    name: str
    status: StepStatus
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == StepStatus.OK


@dataclass
class PanicSettings:
    """Tunables for the panic pipeline."""
    alert_radius_km: float = 16.0
    alert_concurrency: int = 10
    location_timeout_seconds: float = 10.0
    settle_delay_seconds: float = 0.5
    settle_timeout_seconds: float = 5.0
    exit_delay_seconds: float = 1.0
    alert_message: str = DEFAULT_ALERT_MESSAGE

    @classmethod
    def from_config(cls, config: DesistConfig) -> "PanicSettings":
        return cls(
            alert_radius_km=config.alert_radius_km,
            alert_concurrency=config.alert_concurrency,
            location_timeout_seconds=config.location_timeout_seconds,
            settle_delay_seconds=config.settle_delay_seconds,
            settle_timeout_seconds=config.settle_timeout_seconds,
            exit_delay_seconds=config.exit_delay_seconds,
            alert_message=config.alert_message,
        )


@dataclass
class PanicReport:
    """What happened during one panic activation."""
    trigger: str
    started_at: str
    steps: List[StepResult] = field(default_factory=list)
    location: Optional[Location] = None
    alerts_sent: int = 0
    alerts_failed: int = 0
    incident_id: Any = None
    used_fallback: bool = False

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.name == name:
                return result
        return None

    @property
    def step_names(self) -> List[str]:
        return [s.name for s in self.steps]

    @property
    def help_requested(self) -> bool:
        return self.alerts_sent > 0

    @property
    def summary(self) -> str:
        """The single line shown to the user."""
        if self.help_requested:
            return "Help request sent"
        return "Signed out"


class PanicActionSequencer:
    """
    Runs the panic pipeline exactly once.

    `is_executing` is set before the first await and never cleared: the
    pipeline ends in sign-out (and usually process exit), so a second
    activation in the same session is always a duplicate.
    """

    def __init__(
        self,
        *,
        cache: PersistentKeyValueStore,
        session_store: PersistentKeyValueStore,
        auth: AuthService,
        location_provider: LocationProvider,
        dispatcher: NotificationDispatcher,
        directory: RecipientDirectory,
        recorder: IncidentRecorder,
        process: ProcessController,
        settings: Optional[PanicSettings] = None,
        settle_signal: Optional[Callable[[], Awaitable[Any]]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            settle_signal: Awaitable factory that resolves once sign-out side
                effects (navigation to the login screen) have landed. Without
                one, a fixed settle delay is used.
            sleep: Delay function, injectable for tests
        """
        self.cache = cache
        self.session_store = session_store
        self.auth = auth
        self.location_provider = location_provider
        self.dispatcher = dispatcher
        self.directory = directory
        self.recorder = recorder
        self.process = process
        self.settings = settings or PanicSettings()
        self.settle_signal = settle_signal
        self._sleep = sleep

        self._is_executing = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_executing(self) -> bool:
        return self._is_executing

    def trigger_soon(self, trigger: str = "gesture") -> Optional[asyncio.Task]:
        """
        Schedule `trigger()` on the running loop.
        Suitable as a synchronous gesture callback.
        """
        if self._is_executing:
            logger.info("Panic mode already running, ignoring %s trigger", trigger)
            return None
        task = asyncio.get_running_loop().create_task(self.trigger(trigger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def trigger(self, trigger: str = "gesture") -> Optional[PanicReport]:
        """
        Run the panic pipeline.

        Returns:
            The PanicReport, or None if the pipeline already ran.
        """
        if self._is_executing:
            logger.info("Panic mode already running, ignoring %s trigger", trigger)
            return None
        self._is_executing = True

        logger.warning("🚨 Panic mode triggered (%s)", trigger)
        report = PanicReport(trigger=trigger, started_at=datetime.now(timezone.utc).isoformat())

        try:
            await self._run_steps(report)
        except Exception:
            logger.exception("Panic sequence aborted, falling back to local wipe and sign-out")
            report.used_fallback = True
            await self._last_resort(report)

        logger.info("Panic mode finished: %s", report.summary)
        return report

    # =========================================================
    # PIPELINE
    # =========================================================

    async def _run_steps(self, report: PanicReport) -> None:
        located = await self._run_step(report, "acquire_location", self._acquire_location)
        report.location = located.value

        alerted = await self._run_step(
            report, "alert_recipients",
            self._alert_recipients, report.location, report.trigger
        )
        if alerted.ok:
            report.alerts_sent, report.alerts_failed = alerted.value

        recorded = await self._run_step(report, "record_incident", self._record_incident, report)
        report.incident_id = recorded.value

        await self._run_step(report, "clear_cache", self.cache.clear)
        await self._run_step(report, "sign_out", self.auth.sign_out)
        await self._run_step(report, "clear_session", self._clear_session)
        await self._run_step(report, "await_settle", self._await_settle)
        await self._run_step(report, "terminate_process", self._terminate_process)

    async def _last_resort(self, report: PanicReport) -> None:
        await self._run_step(report, "fallback_clear_cache", self.cache.clear)
        await self._run_step(report, "fallback_sign_out", self.auth.sign_out)
        await self._run_step(report, "fallback_clear_session", self._clear_session)

    async def _run_step(
        self,
        report: PanicReport,
        name: str,
        step: Callable[..., Awaitable[Any]],
        *args: Any
    ) -> StepResult:
        logger.debug("Panic step %s starting", name)
        try:
            value = await step(*args)
        except Exception as e:
            logger.warning("Panic step %s failed: %s: %s", name, type(e).__name__, e)
            result = StepResult(name=name, status=StepStatus.FAILED, error=f"{type(e).__name__}: {e}")
        else:
            result = StepResult(name=name, status=StepStatus.OK, value=value)
        report.steps.append(result)
        return result

    # =========================================================
    # STEPS
    # =========================================================

    async def _acquire_location(self) -> Location:
        timeout = self.settings.location_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.location_provider.get_current_position(),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise PlatformTimeoutError(f"No location fix within {timeout}s") from e

    async def _alert_recipients(
        self,
        location: Optional[Location],
        trigger: str
    ) -> Tuple[int, int]:
        """Returns (sent, failed)."""
        recipients = await self.directory.recipients_near(location, self.settings.alert_radius_km)
        if not recipients:
            logger.warning("No recipients to alert")
            return 0, 0

        message = format_alert_message(self.settings.alert_message, location)
        payload = build_alert_payload(message, location, trigger)
        semaphore = asyncio.Semaphore(self.settings.alert_concurrency)

        async def send(recipient: Recipient) -> bool:
            async with semaphore:
                try:
                    await self.dispatcher.send_to_recipient(recipient, payload)
                    return True
                except Exception as e:
                    logger.warning("Alert to %s failed: %s", recipient.name, e)
                    return False

        results = await asyncio.gather(*(send(r) for r in recipients))
        sent = sum(1 for delivered in results if delivered)
        logger.info("Alerts delivered: %d/%d", sent, len(results))
        return sent, len(results) - sent

    async def _record_incident(self, report: PanicReport) -> Any:
        location_step = report.step("acquire_location")
        record = IncidentRecord(
            incident_type="panic_activation",
            description=f"Panic mode triggered by {report.trigger}",
            trigger=report.trigger,
            created_at=report.started_at,
            location=report.location,
            alerts_sent=report.alerts_sent,
            alerts_failed=report.alerts_failed,
            metadata={
                "location_error": location_step.error if location_step else None,
            },
        )
        return await self.recorder.create(record)

    async def _clear_session(self) -> int:
        keys = await self.session_store.list_keys()
        for key in keys:
            await self.session_store.remove(key)
        return len(keys)

    async def _await_settle(self) -> str:
        if self.settle_signal is None:
            await self._sleep(self.settings.settle_delay_seconds)
            return "delay"

        timeout = self.settings.settle_timeout_seconds
        try:
            await asyncio.wait_for(self.settle_signal(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PlatformTimeoutError(f"No settle acknowledgment within {timeout}s") from e
        return "acknowledged"

    async def _terminate_process(self) -> bool:
        if not self.process.supported:
            return False
        await self._sleep(self.settings.exit_delay_seconds)
        self.process.terminate()
        return True
