"""
Module: test_sequencer.py
Purpose: Test the panic pipeline end to end against fakes

Coverage:
- Step order
- At most one run per sequencer
- Step isolation (a failing step never stops the next one)
- Location timeout and denial
- Bounded alert fan-out
- Settle wait and process termination
- Last-resort fallback
"""

import asyncio

import pytest

from desist.errors import PermissionDeniedError
from desist.interfaces import Location
from desist.sequencer import PanicSettings, StepStatus

PIPELINE = [
    "acquire_location",
    "alert_recipients",
    "record_incident",
    "clear_cache",
    "sign_out",
    "clear_session",
    "await_settle",
    "terminate_process",
]


class TestOrdering:
    """Alerts before wipe, wipe before sign-out, sign-out before exit"""

    @pytest.mark.asyncio
    async def test_full_call_order(self, collaborators):
        report = await collaborators.sequencer().trigger()

        assert collaborators.calls == [
            "location.get",
            "directory.query",
            "dispatch:a",
            "dispatch:b",
            "dispatch:c",
            "recorder.create",
            "cache.clear",
            "auth.sign_out",
            "session.remove:session",
            "sleep:0.5",
            "sleep:1.0",
            "process.terminate",
        ]
        assert report.step_names == PIPELINE
        assert all(step.ok for step in report.steps)

    @pytest.mark.asyncio
    async def test_local_data_is_gone(self, collaborators):
        await collaborators.sequencer().trigger()

        assert collaborators.cache.data == {}
        assert collaborators.session_store.data == {}
        assert await collaborators.auth.get_current_session() is None

    @pytest.mark.asyncio
    async def test_report_counts_and_summary(self, collaborators):
        report = await collaborators.sequencer().trigger("manual")

        assert report.trigger == "manual"
        assert report.location == Location(40.7128, -74.0060)
        assert (report.alerts_sent, report.alerts_failed) == (3, 0)
        assert report.incident_id == 1
        assert report.help_requested is True
        assert report.summary == "Help request sent"
        assert report.used_fallback is False
        assert report.started_at.endswith("+00:00")

    @pytest.mark.asyncio
    async def test_directory_queried_with_radius(self, collaborators):
        settings = PanicSettings(alert_radius_km=2.5, settle_delay_seconds=0, exit_delay_seconds=0)
        await collaborators.sequencer(settings=settings).trigger()

        assert collaborators.directory.queries == [(Location(40.7128, -74.0060), 2.5)]

    @pytest.mark.asyncio
    async def test_alert_payload_carries_location_link(self, collaborators):
        await collaborators.sequencer().trigger()

        _, payload = collaborators.dispatcher.sent[0]
        assert payload["event"] == "panic"
        assert payload["trigger"] == "gesture"
        assert "https://maps.google.com/?q=40.7128,-74.006" in payload["message"]
        assert payload["location"] == {"latitude": 40.7128, "longitude": -74.0060}

    @pytest.mark.asyncio
    async def test_incident_record_contents(self, collaborators):
        await collaborators.sequencer().trigger()

        record = collaborators.recorder.records[0]
        assert record.incident_type == "panic_activation"
        assert record.trigger == "gesture"
        assert record.alerts_sent == 3
        assert record.location == Location(40.7128, -74.0060)
        assert record.metadata == {"location_error": None}


class TestReentrancy:
    """A second trigger while (or after) running is a no-op"""

    @pytest.mark.asyncio
    async def test_concurrent_triggers_run_once(self, collaborators):
        sequencer = collaborators.sequencer()

        results = await asyncio.gather(sequencer.trigger(), sequencer.trigger())

        assert len([r for r in results if r is not None]) == 1
        assert collaborators.calls.count("auth.sign_out") == 1
        assert collaborators.calls.count("location.get") == 1

    @pytest.mark.asyncio
    async def test_trigger_after_completion_is_ignored(self, collaborators):
        sequencer = collaborators.sequencer()
        await sequencer.trigger()
        collaborators.calls.clear()

        assert await sequencer.trigger() is None
        assert collaborators.calls == []
        assert sequencer.is_executing is True

    @pytest.mark.asyncio
    async def test_trigger_soon_schedules_one_run(self, collaborators):
        sequencer = collaborators.sequencer()

        first = sequencer.trigger_soon("gesture")
        second = sequencer.trigger_soon("gesture")
        results = await asyncio.gather(first, second)

        assert len([r for r in results if r is not None]) == 1
        assert sequencer.trigger_soon("gesture") is None


class TestStepIsolation:
    """Failures are recorded and the sequence moves on"""

    @pytest.mark.asyncio
    async def test_every_alert_failing_still_signs_out(self, collaborators):
        collaborators.dispatcher.fail_all = True

        report = await collaborators.sequencer().trigger()

        assert report.step("alert_recipients").ok
        assert (report.alerts_sent, report.alerts_failed) == (0, 3)
        assert "cache.clear" in collaborators.calls
        assert "auth.sign_out" in collaborators.calls
        assert "session.remove:session" in collaborators.calls
        assert report.summary == "Signed out"

    @pytest.mark.asyncio
    async def test_one_failed_alert_does_not_block_others(self, collaborators):
        collaborators.dispatcher.fail_for = {"b"}

        report = await collaborators.sequencer().trigger()

        assert [r.id for r, _ in collaborators.dispatcher.sent] == ["a", "c"]
        assert (report.alerts_sent, report.alerts_failed) == (2, 1)

    @pytest.mark.asyncio
    async def test_sign_out_failure_still_clears_session(self, collaborators):
        collaborators.auth.fail = True

        report = await collaborators.sequencer().trigger()

        assert report.step("sign_out").status == StepStatus.FAILED
        assert "ConnectionError" in report.step("sign_out").error
        assert report.step("clear_session").ok
        assert collaborators.session_store.data == {}
        assert "process.terminate" in collaborators.calls

    @pytest.mark.asyncio
    async def test_cache_failure_still_signs_out(self, collaborators):
        collaborators.cache.fail_clear = True

        report = await collaborators.sequencer().trigger()

        assert report.step("clear_cache").status == StepStatus.FAILED
        assert report.step("sign_out").ok
        assert report.used_fallback is False

    @pytest.mark.asyncio
    async def test_recorder_failure_continues(self, collaborators):
        collaborators.recorder.fail = True

        report = await collaborators.sequencer().trigger()

        assert report.step("record_incident").status == StepStatus.FAILED
        assert report.incident_id is None
        assert report.step_names == PIPELINE

    @pytest.mark.asyncio
    async def test_no_recipients(self, collaborators):
        collaborators.directory.recipients = []

        report = await collaborators.sequencer().trigger()

        assert report.step("alert_recipients").value == (0, 0)
        assert report.summary == "Signed out"
        assert report.step_names == PIPELINE


class TestLocation:
    """Location is bounded and optional"""

    @pytest.mark.asyncio
    async def test_slow_fix_times_out_and_alerts_anyway(self, collaborators):
        collaborators.location.delay = 1.0

        report = await collaborators.sequencer().trigger()

        step = report.step("acquire_location")
        assert step.status == StepStatus.FAILED
        assert step.error.startswith("PlatformTimeoutError")
        assert report.location is None
        assert report.alerts_sent == 3

        _, payload = collaborators.dispatcher.sent[0]
        assert "location unavailable" in payload["message"]
        assert payload["location"] is None

    @pytest.mark.asyncio
    async def test_permission_denied(self, collaborators):
        collaborators.location.error = PermissionDeniedError("location not granted")

        report = await collaborators.sequencer().trigger()

        assert report.location is None
        assert collaborators.directory.queries[0][0] is None
        assert "PermissionDeniedError" in collaborators.recorder.records[0].metadata["location_error"]


class TestConcurrencyBound:
    """Alert fan-out never exceeds alert_concurrency"""

    @pytest.mark.asyncio
    async def test_serial_when_bound_is_one(self, collaborators):
        settings = PanicSettings(alert_concurrency=1, settle_delay_seconds=0, exit_delay_seconds=0)

        await collaborators.sequencer(settings=settings).trigger()

        assert collaborators.dispatcher.max_in_flight == 1
        assert len(collaborators.dispatcher.sent) == 3

    @pytest.mark.asyncio
    async def test_parallel_up_to_bound(self, collaborators):
        await collaborators.sequencer().trigger()

        assert collaborators.dispatcher.max_in_flight == 3


class TestSettleAndTerminate:
    """The tail of the pipeline"""

    @pytest.mark.asyncio
    async def test_settle_signal_acknowledged(self, collaborators):
        sequencer = collaborators.sequencer(settle_signal=lambda: asyncio.sleep(0))

        report = await sequencer.trigger()

        assert report.step("await_settle").value == "acknowledged"
        assert "sleep:0.5" not in collaborators.calls

    @pytest.mark.asyncio
    async def test_settle_signal_timeout_still_terminates(self, collaborators):
        sequencer = collaborators.sequencer(settle_signal=lambda: asyncio.sleep(5))

        report = await sequencer.trigger()

        assert report.step("await_settle").status == StepStatus.FAILED
        assert "PlatformTimeoutError" in report.step("await_settle").error
        assert collaborators.process.terminated == 1

    @pytest.mark.asyncio
    async def test_fixed_delay_without_signal(self, collaborators):
        report = await collaborators.sequencer().trigger()

        assert report.step("await_settle").value == "delay"
        assert collaborators.sleeps[0] == 0.5

    @pytest.mark.asyncio
    async def test_unsupported_platform_does_not_terminate(self, collaborators):
        collaborators.process.supported = False

        report = await collaborators.sequencer().trigger()

        assert report.step("terminate_process").value is False
        assert "process.terminate" not in collaborators.calls
        assert "sleep:1.0" not in collaborators.calls

    @pytest.mark.asyncio
    async def test_exit_delay_precedes_termination(self, collaborators):
        await collaborators.sequencer().trigger()

        assert collaborators.calls[-2:] == ["sleep:1.0", "process.terminate"]


class TestFallback:
    """An aborted pipeline still wipes and signs out"""

    @pytest.mark.asyncio
    async def test_last_resort_runs_on_abort(self, collaborators):
        sequencer = collaborators.sequencer()

        async def abort(report):
            raise RuntimeError("pipeline broke")

        sequencer._run_steps = abort

        report = await sequencer.trigger()

        assert report.used_fallback is True
        assert report.step_names == [
            "fallback_clear_cache",
            "fallback_sign_out",
            "fallback_clear_session",
        ]
        assert collaborators.calls == [
            "cache.clear",
            "auth.sign_out",
            "session.remove:session",
        ]
        assert report.summary == "Signed out"
