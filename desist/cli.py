"""
Desist Daemon - Command Line Interface
Main entry point for the daemon.

Usage:
    desist start      # Start the daemon (panic gesture + stealth timeout)
    desist status     # Show current state
    desist config     # Show/create config file
    desist incidents  # List recorded panic activations
    desist panic      # Trigger panic mode now
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Callable, Optional

from .auth import HttpAuthService
from .config import (
    DesistConfig,
    load_config,
    get_config_path,
    get_cache_path,
    get_session_path,
    create_default_config,
    print_config,
)
from .directory import ContactDirectory
from .errors import ConfigurationError
from .gesture import GestureTriggerDetector
from .incidents import SQLiteIncidentRecorder, get_db_path
from .lifecycle import AppLifecycle
from .location import ConfiguredLocationProvider
from .notifications import WebhookNotificationDispatcher
from .platform import NoopProcessController, select_process_controller
from .sequencer import PanicActionSequencer, PanicSettings
from .stealth import StealthAutoTimeout, StealthMode, bind_auto_timeout
from .store import JsonFileStore

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_sequencer(
    config: DesistConfig,
    cache: JsonFileStore,
    session_store: JsonFileStore,
    recorder: SQLiteIncidentRecorder,
    process=None,
) -> PanicActionSequencer:
    """Wire the panic pipeline to the concrete collaborators."""
    return PanicActionSequencer(
        cache=cache,
        session_store=session_store,
        auth=HttpAuthService(session_store, config.auth_url, config.auth_api_key),
        location_provider=ConfiguredLocationProvider(config.home_latitude, config.home_longitude),
        dispatcher=WebhookNotificationDispatcher(
            config.webhook_url, config.webhook_type, config.webhook_key
        ),
        directory=ContactDirectory.from_config(config.emergency_contacts),
        recorder=recorder,
        process=process or select_process_controller(config.platform),
        settings=PanicSettings.from_config(config),
    )


def create_input_collector(loop, on_click, on_activity):
    """Build the pynput input collector (imported lazily, it needs a display)."""
    from .collector import InputCollector
    return InputCollector(loop, on_click=on_click, on_activity=on_activity)


class DesistDaemon:
    """
    Main daemon that connects input, the panic gesture and stealth mode.

    Args:
        config: Loaded configuration
        collector_factory: Called as factory(loop, on_click, on_activity) to
            build the input source. Defaults to the pynput InputCollector.
    """

    def __init__(self, config: DesistConfig, collector_factory: Optional[Callable] = None):
        self.config = config
        self.collector_factory = collector_factory or create_input_collector
        self.cache = JsonFileStore(get_cache_path())
        self.session_store = JsonFileStore(get_session_path())
        self.recorder = SQLiteIncidentRecorder()

        self.lifecycle = AppLifecycle()
        self.stealth = StealthMode(config.cover_screen)
        self.detector = GestureTriggerDetector()
        self.auto_timeout = StealthAutoTimeout(
            self.lifecycle,
            is_mode_active=lambda: self.stealth.is_active
        )
        self.sequencer = build_sequencer(config, self.cache, self.session_store, self.recorder)

        self._stopped: Optional[asyncio.Event] = None
        self.last_report = None

    def _on_gesture(self) -> None:
        """Called when the click burst completes."""
        print("\n🚨 Panic gesture detected")
        task = self.sequencer.trigger_soon("gesture")
        if task is not None:
            task.add_done_callback(self._on_panic_done)

    def _on_panic_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        report = task.result()
        if report is not None:
            self.last_report = report
            print(f"✅ {report.summary}")

    def _on_stealth_change(self, is_active: bool, trigger: str) -> None:
        if is_active:
            print(f"🕶️ Stealth mode on ({trigger}), "
                  f"auto-off after {self.config.stealth_timeout_minutes} idle min")
        else:
            print(f"👀 Stealth mode off ({trigger})")

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self.stop)
        # Lifecycle transitions from the host (screen lock, window hidden, ...)
        if hasattr(signal, "SIGUSR1"):
            loop.add_signal_handler(signal.SIGUSR1, self.lifecycle.background)
            loop.add_signal_handler(signal.SIGUSR2, self.lifecycle.foreground)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
        if hasattr(signal, "SIGUSR1"):
            loop.remove_signal_handler(signal.SIGUSR1)
            loop.remove_signal_handler(signal.SIGUSR2)

    async def run(self, stealth: bool = False) -> None:
        """Run until stopped."""
        loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()

        if self.config.panic_mode_enabled:
            self.detector.configure(
                self.config.required_taps,
                self.config.tap_window_ms,
                self._on_gesture
            )

        self.stealth.add_listener(self._on_stealth_change)
        bind_auto_timeout(self.stealth, self.auto_timeout, self.config.stealth_timeout_minutes)
        if stealth or self.config.stealth_enabled:
            self.stealth.activate("startup")

        collector = self.collector_factory(
            loop,
            self.detector.record_event,
            self.auto_timeout.reset_timeout
        )
        self._install_signal_handlers(loop)

        print("🚀 Starting Desist daemon...")
        print(f"📁 Incidents: {get_db_path()}")
        print(f"⚙️ Config: {get_config_path()}")
        if self.config.panic_mode_enabled:
            print(f"🆘 Panic gesture: {self.config.required_taps} clicks "
                  f"within {self.config.tap_window_ms}ms of each other")
        else:
            print("🆘 Panic gesture: disabled (set panic_mode_enabled: true)")
        print("")
        print("Press Ctrl+C to stop")
        print("-" * 60)

        collector.start()
        try:
            await self._stopped.wait()
        finally:
            collector.stop()
            self._remove_signal_handlers(loop)
            self.detector.disable()
            self.auto_timeout.stop()

            deleted = self.recorder.cleanup_old_data(self.config.data_retention_days)
            if deleted > 0:
                print(f"\n🧹 Cleaned up {deleted} old incident records")

            print("\n👋 Desist daemon stopped")

    def stop(self) -> None:
        """Stop the daemon."""
        if self._stopped is not None:
            self._stopped.set()


def cmd_start(args, config: DesistConfig):
    """Start the daemon."""
    daemon = DesistDaemon(config)
    asyncio.run(daemon.run(stealth=args.stealth))


def cmd_status(args, config: DesistConfig):
    """Show current status."""
    recorder = SQLiteIncidentRecorder()
    session_store = JsonFileStore(get_session_path())
    auth = HttpAuthService(session_store, config.auth_url, config.auth_api_key)
    session = asyncio.run(auth.get_current_session())

    print("📊 Desist Status")
    print("-" * 40)
    print(f"Panic mode: {'ENABLED' if config.panic_mode_enabled else 'disabled'}")
    print(f"Emergency contacts: {len(config.emergency_contacts)}")
    print(f"Alert webhook: {'configured' if config.webhook_url else '⚠️ not set'}")
    print(f"Session: {'signed in' if session else 'signed out'}")
    print(f"Incidents recorded: {recorder.count()}")

    recent = recorder.get_recent(count=1)
    if recent:
        last = recent[0]
        print(f"\nLast activation: {last['created_at']} ({last['trigger_source']}), "
              f"{last['alerts_sent']} alerts sent")


def cmd_config(args, config: DesistConfig):
    """Show or create config file."""
    config_path = get_config_path()

    if not config_path.exists():
        create_default_config()

    print(f"📁 Config file: {config_path}")
    print_config(config)
    print("To edit, run:")
    print(f"  nano {config_path}")


def cmd_incidents(args, config: DesistConfig):
    """List recorded panic activations."""
    recorder = SQLiteIncidentRecorder()
    incidents = recorder.get_recent(count=args.count)

    if not incidents:
        print("No incidents recorded.")
        return

    for incident in incidents:
        if incident['latitude'] is not None:
            where = f"{incident['latitude']:.4f},{incident['longitude']:.4f}"
        else:
            where = "unknown location"
        print(f"#{incident['id']:<4} {incident['created_at']}  {incident['trigger_source']:<8} "
              f"{where:<22} alerts {incident['alerts_sent']} sent / {incident['alerts_failed']} failed")


def cmd_panic(args, config: DesistConfig):
    """Trigger panic mode from the command line."""
    if not args.yes:
        print("⚠️ This alerts your contacts, wipes local data and signs you out.")
        print("Re-run with --yes to proceed.")
        return 1

    # The CLI process ends by itself, nothing to terminate
    sequencer = build_sequencer(
        config,
        JsonFileStore(get_cache_path()),
        JsonFileStore(get_session_path()),
        SQLiteIncidentRecorder(),
        process=NoopProcessController(),
    )
    report = asyncio.run(sequencer.trigger("manual"))
    print(f"✅ {report.summary}")
    return 0


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Desist - panic gesture and stealth mode daemon',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  desist start             Start the daemon
  desist start --stealth   Start in stealth mode
  desist status            Show current state
  desist config            Show config file
  desist incidents         List panic activations
  desist panic --yes       Trigger panic mode now

Lifecycle:
  kill -USR1 <pid>   app went to background (stealth timer paused)
  kill -USR2 <pid>   app back in foreground (stealth timer re-armed)
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # start command
    start_parser = subparsers.add_parser('start', help='Start the daemon')
    start_parser.add_argument('--stealth', action='store_true', help='Start in stealth mode')
    start_parser.set_defaults(func=cmd_start)

    # status command
    status_parser = subparsers.add_parser('status', help='Show current status')
    status_parser.set_defaults(func=cmd_status)

    # config command
    config_parser = subparsers.add_parser('config', help='Show or create config file')
    config_parser.set_defaults(func=cmd_config)

    # incidents command
    incidents_parser = subparsers.add_parser('incidents', help='List recorded panic activations')
    incidents_parser.add_argument('--count', type=int, default=10, help='How many to show')
    incidents_parser.set_defaults(func=cmd_incidents)

    # panic command
    panic_parser = subparsers.add_parser('panic', help='Trigger panic mode now')
    panic_parser.add_argument('--yes', action='store_true', help='Confirm')
    panic_parser.set_defaults(func=cmd_panic)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"❌ Invalid configuration: {e}")
        return 2

    setup_logging(config.log_level)
    return args.func(args, config) or 0


if __name__ == '__main__':
    sys.exit(main())
