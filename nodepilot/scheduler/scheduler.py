"""
NodePilot - Machine Scheduler
=============================

The minute tick loop that starts and stops machines on schedule.

Every tick:
1. refreshes the node status cache
2. loads the machines that have at least one enabled schedule
3. takes the current time once, in the configured timezone
4. evaluates each machine's start and stop schedules and dispatches the
   actions that are due, one machine after another
5. records how long all of that took

A tick that arrives while the previous one is still running is dropped,
not queued. Missed minutes are never replayed, and a minute that was
already evaluated is not evaluated again.

Alongside the tick the scheduler owns a second timer that refreshes the
status cache on a fixed interval, so node status stays current even when
no machine has a schedule.

Usage:
    python -m nodepilot.scheduler [--debug] [--once] [--status]
"""

import argparse
import asyncio
import enum
import logging
import signal
import sys
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from ..config import get_settings, validate_configuration
from ..services.action_executor import (
    ActionExecutor, ActionOutcome, OutcomeKind, get_action_executor
)
from ..services.machine_control import (
    ActionNotConfiguredError, Direction, action_url, trigger, trigger_machine
)
from ..services.machine_store import MachineNotFoundError, MachineSnapshot, make_machine_source
from ..services.schedule_evaluator import should_fire
from ..services.status_cache import StatusCache, get_status_cache
from ..utils.logging import LogContext, log_performance_metrics, setup_logging
from .config import SchedulerSettings, get_scheduler_settings


logger = logging.getLogger(__name__)

# Schedules have minute resolution; the tick always runs on minute boundaries
TICK_INTERVAL_SECONDS = 60.0


# =============================================================================
# TICK RECORDS
# =============================================================================

class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class ActionRecord:
    """One start or stop call dispatched during a tick."""

    def __init__(self, machine: MachineSnapshot, direction: Direction, outcome: ActionOutcome):
        self.machine_id = str(machine.id)
        self.machine_name = machine.name
        self.direction = direction
        self.url = action_url(machine, direction)
        self.outcome = outcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            'machine_id': self.machine_id,
            'machine_name': self.machine_name,
            'direction': self.direction.value,
            'url': self.url,
            **self.outcome.to_dict()
        }


class TickReport:
    """
    Everything that happened during one tick.

    Status is one of: running, completed, failed, skipped.
    """

    def __init__(self):
        self.tick_id = uuid.uuid4().hex[:8]
        self.started_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None
        self.evaluated_at: Optional[datetime] = None
        self.status = "running"
        self.cache_refreshed: Optional[bool] = None
        self.machines_evaluated = 0
        self.actions: List[ActionRecord] = []
        self.error_message: Optional[str] = None
        self.minute_already_evaluated = False
        self._monotonic_start = time.monotonic()
        self.duration_seconds = 0.0

    def finish(self, status: str) -> None:
        self.status = status
        self.finished_at = datetime.now(timezone.utc)
        self.duration_seconds = time.monotonic() - self._monotonic_start

    @property
    def failed_actions(self) -> int:
        return sum(1 for action in self.actions if not action.outcome.is_success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tick_id': self.tick_id,
            'status': self.status,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'evaluated_at': self.evaluated_at.isoformat() if self.evaluated_at else None,
            'duration_seconds': round(self.duration_seconds, 4),
            'cache_refreshed': self.cache_refreshed,
            'machines_evaluated': self.machines_evaluated,
            'actions': [action.to_dict() for action in self.actions],
            'failed_actions': self.failed_actions,
            'error_message': self.error_message,
            'minute_already_evaluated': self.minute_already_evaluated,
        }


# =============================================================================
# REPEATING TIMER
# =============================================================================

class Ticker:
    """
    Calls an async callback on a fixed cadence.

    Each firing is launched as its own task so a slow callback never delays
    the next firing; callers that must not overlap guard themselves. With
    `align=True` firings land on multiples of `interval` in wall-clock time
    (every minute boundary for a 60 second interval).
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[Any]],
        align: bool = False,
        fire_immediately: bool = False
    ):
        if interval <= 0:
            raise ValueError(f"Ticker interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.align = align
        self.fire_immediately = fire_immediately

        self._loop_task: Optional[asyncio.Task] = None
        self._launched: Set[asyncio.Task] = set()
        self.fire_count = 0

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.is_running:
            logger.warning(f"Ticker {self.name} already running")
            return
        self._loop_task = asyncio.create_task(self._run(), name=f"ticker-{self.name}")
        logger.info(f"Ticker {self.name} started (interval={self.interval}s, aligned={self.align})")

    async def stop(self) -> None:
        """Stop firing. Callbacks already launched are left to their owner."""
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None
        logger.info(f"Ticker {self.name} stopped after {self.fire_count} firing(s)")

    def seconds_until_next(self, now: Optional[float] = None) -> float:
        if not self.align:
            return self.interval
        now = time.time() if now is None else now
        return self.interval - (now % self.interval)

    async def _run(self) -> None:
        if self.fire_immediately:
            self._fire()
        while True:
            await asyncio.sleep(self.seconds_until_next())
            self._fire()

    def _fire(self) -> None:
        self.fire_count += 1
        task = asyncio.create_task(self.callback(), name=f"{self.name}-{self.fire_count}")
        self._launched.add(task)
        task.add_done_callback(self._launched.discard)


# =============================================================================
# MACHINE SCHEDULER
# =============================================================================

class MachineScheduler:
    """
    Evaluates machine schedules once per minute and dispatches due actions.

    The `state` flag is the only mutual exclusion between ticks. Manual
    triggers from the API go straight to the executor and are not
    serialized against scheduled ones.
    """

    def __init__(
        self,
        settings: Optional[SchedulerSettings] = None,
        status_cache: Optional[StatusCache] = None,
        executor: Optional[ActionExecutor] = None,
        machine_source: Optional[Callable[[], List[MachineSnapshot]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        refresh_interval_seconds: Optional[float] = None
    ):
        self.settings = settings or get_scheduler_settings()
        self.status_cache = status_cache or get_status_cache()
        self.executor = executor or get_action_executor()
        self.machine_source = machine_source or make_machine_source()
        self.tz = self.settings.tzinfo
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.refresh_interval_seconds = (
            refresh_interval_seconds if refresh_interval_seconds is not None
            else self.settings.status_refresh_seconds or get_settings().node_status_refresh_seconds
        )

        self.state = SchedulerState.IDLE
        self.history: Deque[TickReport] = deque(maxlen=self.settings.history_size)
        self.last_tick: Optional[TickReport] = None

        self._tick_ticker: Optional[Ticker] = None
        self._refresh_ticker: Optional[Ticker] = None
        self._current_tick: Optional[asyncio.Task] = None
        self._pending_refreshes: Set[asyncio.Task] = set()
        self._last_evaluated_minute: Optional[str] = None

        self.stats = {
            'scheduler_started_at': None,
            'total_ticks': 0,
            'completed_ticks': 0,
            'failed_ticks': 0,
            'skipped_ticks': 0,
            'repeated_minute_ticks': 0,
            'total_actions': 0,
            'successful_actions': 0,
            'failed_actions': 0,
        }

        logger.info(f"Machine scheduler initialized (timezone={self.settings.timezone})")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_started(self) -> bool:
        return self._tick_ticker is not None and self._tick_ticker.is_running

    def start(self) -> None:
        """Start the minute tick and the interval cache refresh. Needs a running event loop."""
        if self.is_started:
            logger.warning("Scheduler is already running")
            return

        self.stats['scheduler_started_at'] = datetime.now(timezone.utc)

        self._tick_ticker = Ticker(
            "schedule-tick",
            TICK_INTERVAL_SECONDS,
            self.tick,
            align=True
        )
        self._refresh_ticker = Ticker(
            "status-refresh",
            self.refresh_interval_seconds,
            self._interval_refresh,
            fire_immediately=True
        )
        self._tick_ticker.start()
        self._refresh_ticker.start()

        logger.info("Machine scheduler started")

    async def stop(self) -> None:
        """
        Stop both timers, give an in-flight tick the grace period, then
        cancel it along with any pending delayed refreshes.
        """
        logger.info("Stopping machine scheduler...")

        for ticker in (self._tick_ticker, self._refresh_ticker):
            if ticker is not None:
                await ticker.stop()

        current = self._current_tick
        if current is not None and not current.done():
            grace = self.settings.shutdown_grace_seconds
            logger.info(f"Waiting up to {grace}s for the running tick to finish")
            done, _ = await asyncio.wait({current}, timeout=grace)
            if not done:
                logger.warning("Cancelling tick still running after shutdown grace period")
                current.cancel()
                await asyncio.gather(current, return_exceptions=True)

        pending = list(self._pending_refreshes)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Machine scheduler stopped")

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def tick(self) -> TickReport:
        """
        Run one evaluation pass, or drop it if another pass is still running.

        Never raises for failures inside the pass; the state always returns
        to idle when the pass ends.
        """
        report = TickReport()
        self.stats['total_ticks'] += 1

        if self.state == SchedulerState.RUNNING:
            self.stats['skipped_ticks'] += 1
            report.finish("skipped")
            self.history.append(report)
            logger.warning(
                "Tick skipped: previous tick still running",
                extra={'event': 'tick_overlap', 'skipped_ticks': self.stats['skipped_ticks']}
            )
            return report

        # No await between the check above and this assignment
        self.state = SchedulerState.RUNNING
        self._current_tick = asyncio.current_task()

        try:
            with LogContext(tick_id=report.tick_id):
                try:
                    await self._run_tick(report)
                    report.finish("completed")
                    self.stats['completed_ticks'] += 1
                except Exception as e:
                    report.error_message = str(e)
                    report.finish("failed")
                    self.stats['failed_ticks'] += 1
                    logger.exception(f"Tick {report.tick_id} failed: {e}")

                log_performance_metrics(
                    logger,
                    "schedule_tick",
                    report.duration_seconds,
                    tick_id=report.tick_id,
                    status=report.status,
                    machines=report.machines_evaluated,
                    actions=len(report.actions),
                    failed_actions=report.failed_actions
                )
        finally:
            if report.finished_at is None:
                report.finish("failed")
                report.error_message = report.error_message or "Tick cancelled"
                self.stats['failed_ticks'] += 1
            self.history.append(report)
            self.last_tick = report
            self._current_tick = None
            self.state = SchedulerState.IDLE

        return report

    async def _run_tick(self, report: TickReport) -> None:
        report.cache_refreshed = await self.status_cache.refresh()

        now = self.clock()
        report.evaluated_at = now

        minute = now.strftime("%Y-%m-%d %H:%M")
        if minute == self._last_evaluated_minute:
            report.minute_already_evaluated = True
            self.stats['repeated_minute_ticks'] += 1
            logger.info(f"Minute {minute} already evaluated; no actions dispatched")
            return

        machines = self.machine_source()
        self._last_evaluated_minute = minute
        report.machines_evaluated = len(machines)

        logger.debug(f"Evaluating {len(machines)} scheduled machine(s) at {now.isoformat()}")

        for machine in machines:
            for direction, schedule in (
                (Direction.START, machine.start_schedule),
                (Direction.STOP, machine.stop_schedule),
            ):
                if not should_fire(schedule, now):
                    continue

                logger.info(f"Schedule due: {direction.value} {machine.name} at {schedule.time}")
                try:
                    outcome = await trigger(machine, direction, self.executor)
                except ActionNotConfiguredError as e:
                    outcome = ActionOutcome(OutcomeKind.PERMANENT_FAILURE, attempts=0, message=str(e))
                    logger.error(str(e))

                self._record_action(report, ActionRecord(machine, direction, outcome))

    def _record_action(self, report: TickReport, record: ActionRecord) -> None:
        report.actions.append(record)
        self.stats['total_actions'] += 1
        if record.outcome.is_success:
            self.stats['successful_actions'] += 1
        else:
            self.stats['failed_actions'] += 1

    # -------------------------------------------------------------------------
    # Cache refresh paths
    # -------------------------------------------------------------------------

    async def _interval_refresh(self) -> None:
        await self.status_cache.refresh()

    def request_refresh(self, delay_seconds: Optional[float] = None) -> asyncio.Task:
        """
        Refresh the status cache after `delay_seconds`.

        Used after a manual start/stop so the new power state shows up
        without waiting for the next interval. Must be called from the
        event loop.
        """
        delay = get_settings().post_action_refresh_delay_seconds if delay_seconds is None else delay_seconds

        async def _delayed():
            await asyncio.sleep(delay)
            await self.status_cache.refresh()

        task = asyncio.create_task(_delayed(), name="delayed-status-refresh")
        self._pending_refreshes.add(task)
        task.add_done_callback(self._pending_refreshes.discard)
        return task

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def get_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        reports = list(self.history)
        if limit is not None:
            reports = reports[-limit:] if limit > 0 else []
        return [report.to_dict() for report in reports]

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status information."""
        started_at = self.stats['scheduler_started_at']
        uptime_seconds = (
            (datetime.now(timezone.utc) - started_at).total_seconds() if started_at else 0.0
        )
        total_actions = self.stats['total_actions']

        return {
            'state': self.state.value,
            'is_started': self.is_started,
            'timezone': self.settings.timezone,
            'tick_interval_seconds': TICK_INTERVAL_SECONDS,
            'refresh_interval_seconds': self.refresh_interval_seconds,
            'uptime_seconds': uptime_seconds,
            'last_tick_duration_seconds': self.last_tick.duration_seconds if self.last_tick else None,
            'last_tick': self.last_tick.to_dict() if self.last_tick else None,
            'statistics': {
                **self.stats,
                'scheduler_started_at': started_at.isoformat() if started_at else None,
                'action_success_rate_percent': (
                    self.stats['successful_actions'] / max(total_actions, 1)
                ) * 100,
            },
            'recent_ticks': self.get_history(limit=10),
        }


# =============================================================================
# SERVICE FACTORY FUNCTION
# =============================================================================

_scheduler_instance = None

def get_scheduler() -> MachineScheduler:
    """Get singleton instance of the machine scheduler."""
    global _scheduler_instance

    if _scheduler_instance is None:
        _scheduler_instance = MachineScheduler()

    return _scheduler_instance


# =============================================================================
# SCHEDULER DAEMON
# =============================================================================

class SchedulerDaemon:
    """
    Runs the scheduler without the HTTP API.

    Handles database setup, seeding the cache from persisted rows, signal
    handling and graceful shutdown.
    """

    def __init__(self, settings: Optional[SchedulerSettings] = None):
        self.settings = settings or get_scheduler_settings()
        self.scheduler: Optional[MachineScheduler] = None
        self.shutdown_event = asyncio.Event()

    def _signal_handler(self, signum: int) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler, sig)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                logger.debug(f"Signal handler for {sig} not supported on this platform")

    def _prepare(self) -> MachineScheduler:
        from ..database import init_database

        init_database()
        self.scheduler = MachineScheduler(self.settings)
        self.scheduler.status_cache.load_persisted()
        return self.scheduler

    async def run(self) -> None:
        logger.info("Starting NodePilot Scheduler Daemon")
        logger.info(f"Configuration: enabled={self.settings.enabled}, timezone={self.settings.timezone}")

        if not self.settings.enabled:
            logger.info("Scheduler is disabled in configuration")
            return

        try:
            self._prepare()
            self._install_signal_handlers()
            self.scheduler.start()
            await self.shutdown_event.wait()
        finally:
            if self.scheduler:
                await self.scheduler.stop()

            from ..database import close_database
            close_database()
            logger.info("NodePilot Scheduler Daemon stopped")

    async def run_once(self) -> TickReport:
        """Run a single tick against the configured database and return its report."""
        try:
            scheduler = self._prepare()
            return await scheduler.tick()
        finally:
            from ..database import close_database
            close_database()


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m nodepilot.scheduler",
        description="NodePilot Scheduler Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s              # Run the scheduler until interrupted
  %(prog)s --debug      # Run with debug logging
  %(prog)s --once       # Run a single tick, print its report and exit
  %(prog)s --status     # Show configuration and scheduled machines and exit
  %(prog)s --start ID   # Start one machine now and exit
        """
    )
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--once', action='store_true', help='Run one tick and exit')
    mode.add_argument('--status', action='store_true', help='Show scheduler status and exit')
    mode.add_argument('--start', metavar='MACHINE_ID', help='Start one machine immediately and exit')
    mode.add_argument('--stop', metavar='MACHINE_ID', help='Stop one machine immediately and exit')
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(log_level="DEBUG" if args.debug else None)

    for error in validate_configuration():
        logger.error(f"Configuration error: {error}")

    try:
        if args.status:
            show_scheduler_status()
            return 0

        if args.start or args.stop:
            direction = Direction.START if args.start else Direction.STOP
            return await run_manual_trigger(args.start or args.stop, direction)

        daemon = SchedulerDaemon()

        if args.once:
            report = await daemon.run_once()
            print_tick_report(report)
            return 0 if report.status == "completed" else 1

        await daemon.run()
        return 0

    except Exception as e:
        logger.error(f"Scheduler failed: {e}")
        return 1


def print_tick_report(report: TickReport) -> None:
    print(f"Tick {report.tick_id}: {report.status} in {report.duration_seconds:.3f}s")
    print(f"  Status cache refreshed: {report.cache_refreshed}")
    print(f"  Machines evaluated: {report.machines_evaluated}")
    if report.error_message:
        print(f"  Error: {report.error_message}")
    for action in report.actions:
        mark = "ok" if action.outcome.is_success else "FAILED"
        print(f"  [{mark}] {action.direction.value} {action.machine_name}: {action.outcome}")


async def run_manual_trigger(machine_id: str, direction: Direction) -> int:
    """Trigger one machine outside the tick loop and print the outcome."""
    from ..database import close_database, init_database

    init_database()
    try:
        outcome = await trigger_machine(machine_id, direction)
    except (MachineNotFoundError, ActionNotConfiguredError) as e:
        print(f"Cannot {direction.value} machine: {e}")
        return 1
    finally:
        close_database()

    print(f"{direction.value.capitalize()} {machine_id}: {outcome}")
    return 0 if outcome.is_success else 1


def show_scheduler_status() -> None:
    """Print configuration and the machines that currently have schedules."""
    from ..database import close_database, init_database
    from ..services.machine_store import load_scheduled_machines

    settings = get_scheduler_settings()
    app_settings = get_settings()

    print("NodePilot Scheduler Status")
    print("=" * 40)
    print(f"Enabled: {settings.enabled}")
    print(f"Timezone: {settings.timezone}")
    print(f"Tick interval: {TICK_INTERVAL_SECONDS:.0f}s (minute-aligned)")
    print(f"Status source: {app_settings.node_status_url} "
          f"(refresh every {settings.status_refresh_seconds or app_settings.node_status_refresh_seconds}s)")
    print(f"Action retries: {app_settings.action_max_retries} "
          f"x {app_settings.action_retry_delay_seconds}s")
    print()

    init_database()
    try:
        machines = load_scheduled_machines()
    finally:
        close_database()

    print(f"Scheduled Machines ({len(machines)}):")
    for machine in machines:
        print(f"  {machine.name} ({machine.node_id})")
        for label, schedule in (("start", machine.start_schedule), ("stop", machine.stop_schedule)):
            if not schedule.enabled:
                continue
            window = ""
            if schedule.from_date or schedule.to_date:
                window = f" from {schedule.from_date} to {schedule.to_date}"
            print(f"    {label}: {schedule.type} at {schedule.time}{window}")
    print()


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nScheduler interrupted by user")


if __name__ == "__main__":
    run()
