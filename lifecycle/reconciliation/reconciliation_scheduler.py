"""
Reconciliation Scheduler - polls upstream until released actuals appear.

A single periodic sweep owns every event that is live or awaiting its data.
Each sweep sends one batched request to the actuals provider and promotes any
value it gets back through the store's compare-and-set write, so overlapping
triggers (scheduled sweep, forced refresh, reload) can never promote an event
twice or overwrite a value that is already there.

Per-event task states:

    pending  -> registered, not yet polled
    polling  -> polled at least once, still inside the active window
    stopped  -> past the polling ceiling; only re-checked lazily
    resolved -> actual promoted, task removed from the registry
"""

import asyncio
import threading
from enum import Enum
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from pydantic import BaseModel, Field

from calendar_core.apis.market_data import BaseActualsProvider
from calendar_core.base.component import BaseComponent
from calendar_core.base.models import ActualUpdate, EventRef, LifecycleState
from calendar_core.utils.time_utils import TimeUtils
from lifecycle.store.event_store import EventStore


class TaskState(str, Enum):
    PENDING = "pending"
    POLLING = "polling"
    RESOLVED = "resolved"
    STOPPED = "stopped"


class ReconciliationTask(BaseModel):
    """In-memory polling bookkeeping for one event."""
    
    event_id: str
    state: TaskState = TaskState.PENDING
    registered_at: datetime
    last_polled_at: Optional[datetime] = None
    attempts: int = 0


class SweepReport(BaseModel):
    """Outcome of one reconciliation sweep."""
    
    trigger: str = "scheduled"
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    polled: int = 0
    promoted: List[str] = Field(default_factory=list)
    moved_to_lazy: List[str] = Field(default_factory=list)
    skipped: bool = False
    cancelled: bool = False
    success: bool = True
    error_message: Optional[str] = None
    consecutive_failures: int = 0
    execution_time_ms: Optional[float] = None


class CancellationToken:
    """
    Cancellation flag handed to a sweep and checked before every write.
    
    A token is bound to the store generation that was current when the sweep
    started; reloading the store cancels tokens of older generations. The
    sweep also registers a callback that aborts its in-flight upstream fetch.
    """
    
    def __init__(self, generation: Optional[int] = None):
        self.generation = generation
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
    
    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
    
    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run `callback` on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()
    
    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
    
    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ReconciliationScheduler(BaseComponent):
    """
    Periodic batch poller that promotes released actuals exactly once.
    """
    
    def __init__(self, store: EventStore, provider: BaseActualsProvider,
                 interval_seconds: Optional[float] = None,
                 fetch_timeout_seconds: Optional[float] = None,
                 polling_ceiling_minutes: Optional[float] = None,
                 degraded_after_failures: Optional[int] = None,
                 lazy_recheck_interval_seconds: Optional[float] = None,
                 lazy_max_age_hours: Optional[float] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        super().__init__(name="ReconciliationScheduler", config_section="reconciliation")
        self.store = store
        self.provider = provider
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        
        self.interval_seconds = float(self._setting(interval_seconds, "interval_seconds", 30))
        self.fetch_timeout_seconds = float(self._setting(fetch_timeout_seconds, "fetch_timeout_seconds", 10))
        self.polling_ceiling_minutes = float(self._setting(polling_ceiling_minutes, "polling_ceiling_minutes", 90))
        self.degraded_after_failures = int(self._setting(degraded_after_failures, "degraded_after_failures", 5))
        self.lazy_recheck_interval = timedelta(
            seconds=float(self._setting(lazy_recheck_interval_seconds, "lazy_recheck_interval_seconds", 900))
        )
        self.lazy_max_age = timedelta(hours=float(self._setting(lazy_max_age_hours, "lazy_max_age_hours", 24)))
        
        self._tasks: Dict[str, ReconciliationTask] = {}
        self._registry_lock = threading.Lock()
        self._sweep_lock = asyncio.Lock()
        self._in_flight_token: Optional[CancellationToken] = None
        self._consecutive_failures = 0
        self._last_lazy_recheck: Optional[datetime] = None
        self._loop_task: Optional[asyncio.Task] = None
        
        store.add_reload_listener(self._on_store_reload)
    
    def _setting(self, explicit, key: str, default):
        return explicit if explicit is not None else self.get_config_value(key, default)
    
    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    
    def register(self, event_id: str, now: Optional[datetime] = None, lazy: bool = False) -> bool:
        """
        Start tracking an event. Already tracked events are left untouched.
        
        Returns:
            True if a new task was created
        """
        with self._registry_lock:
            if event_id in self._tasks:
                return False
            self._tasks[event_id] = ReconciliationTask(
                event_id=event_id,
                state=TaskState.STOPPED if lazy else TaskState.PENDING,
                registered_at=TimeUtils.ensure_utc(now or self.clock()),
            )
        
        self.logger.debug(f"Registered {event_id} for {'lazy' if lazy else 'active'} polling")
        return True
    
    def deregister(self, event_id: str, resolved: bool = False) -> Optional[ReconciliationTask]:
        """Stop tracking an event and return its final task record."""
        with self._registry_lock:
            task = self._tasks.pop(event_id, None)
            if task is not None and resolved:
                task.state = TaskState.RESOLVED
        
        if task is not None:
            self.logger.debug(f"Deregistered {event_id} ({task.state.value})")
        return task
    
    def task(self, event_id: str) -> Optional[ReconciliationTask]:
        with self._registry_lock:
            task = self._tasks.get(event_id)
            return task.model_copy() if task is not None else None
    
    def tasks(self) -> Dict[str, ReconciliationTask]:
        with self._registry_lock:
            return {event_id: task.model_copy() for event_id, task in self._tasks.items()}
    
    def sync_registry(self, now: Optional[datetime] = None) -> None:
        """
        Align the registry with the store's current classification.
        
        Live and awaiting events get an active task; overdue events within
        the lazy age limit are kept for lazy re-checks; resolved, upcoming
        and vanished events are dropped. A lazy task whose event was
        rescheduled back inside the polling ceiling resumes active polling.
        """
        now = TimeUtils.ensure_utc(now or self.clock())
        seen = set()
        
        for event, classification in self.store.classify_all(now):
            seen.add(event.id)
            state = classification.state
            
            if state in (LifecycleState.LIVE, LifecycleState.AWAITING_DATA):
                within_ceiling = (now - classification.start).total_seconds() / 60 <= self.polling_ceiling_minutes
                if not self.register(event.id, now) and within_ceiling:
                    self._unpark(event.id)
            elif state == LifecycleState.OVERDUE:
                if now - classification.start <= self.lazy_max_age:
                    if not self.register(event.id, now, lazy=True):
                        self._park(event.id)
                else:
                    self.deregister(event.id)
            elif state == LifecycleState.RESOLVED:
                self.deregister(event.id, resolved=True)
            else:
                self.deregister(event.id)
        
        for event_id in set(self.tasks()) - seen:
            self.deregister(event_id)
    
    def _park(self, event_id: str) -> bool:
        """Move an active task into lazy mode. Returns True if it changed."""
        with self._registry_lock:
            task = self._tasks.get(event_id)
            if task is None or task.state == TaskState.STOPPED:
                return False
            task.state = TaskState.STOPPED
        
        self.logger.info(f"No actual for {event_id} past the polling ceiling, switching to lazy re-checks")
        return True
    
    def _unpark(self, event_id: str) -> bool:
        """Return a lazy task to active polling (e.g. after a reschedule)."""
        with self._registry_lock:
            task = self._tasks.get(event_id)
            if task is None or task.state != TaskState.STOPPED:
                return False
            task.state = TaskState.POLLING if task.attempts else TaskState.PENDING
        
        self.logger.info(f"{event_id} is back inside its active window, resuming scheduled polling")
        return True
    
    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------
    
    @property
    def sweep_in_flight(self) -> bool:
        return self._sweep_lock.locked()
    
    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures
    
    async def sweep(self, now: Optional[datetime] = None, include_lazy: bool = False,
                    token: Optional[CancellationToken] = None,
                    trigger: str = "scheduled") -> SweepReport:
        """
        Run one reconciliation sweep.
        
        A sweep requested while another is still running is skipped, not
        queued.
        
        Args:
            now: Sweep time (defaults to the scheduler clock)
            include_lazy: Also re-check tasks that are in lazy mode
            token: Cancellation token; a fresh one bound to the current store
                generation is created when omitted
            trigger: Label recorded in the report
            
        Returns:
            SweepReport describing what happened
        """
        if self._sweep_lock.locked():
            self.logger.debug(f"Sweep ({trigger}) skipped: previous sweep still in flight")
            return SweepReport(trigger=trigger, skipped=True,
                               consecutive_failures=self._consecutive_failures)
        
        async with self._sweep_lock:
            return await self._run_sweep(TimeUtils.ensure_utc(now or self.clock()),
                                         include_lazy, token, trigger)
    
    async def force_refresh(self, now: Optional[datetime] = None,
                            token: Optional[CancellationToken] = None) -> SweepReport:
        """Immediate out-of-band sweep that also re-checks lazy tasks."""
        return await self.sweep(now=now, include_lazy=True, token=token, trigger="forced")
    
    async def safe_sweep(self, now: Optional[datetime] = None, include_lazy: bool = False) -> SweepReport:
        """
        Sweep with error handling; never raises.
        """
        try:
            return await self.sweep(now=now, include_lazy=include_lazy)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Error in reconciliation sweep: {str(e)}")
            return SweepReport(success=False, error_message=str(e),
                               consecutive_failures=self._consecutive_failures)
    
    async def _run_sweep(self, now: datetime, include_lazy: bool,
                         token: Optional[CancellationToken], trigger: str) -> SweepReport:
        report = SweepReport(trigger=trigger, started_at=now)
        start_time = self.log_execution_start("sweep", {"trigger": trigger, "include_lazy": include_lazy})
        
        self.sync_registry(now)
        
        token = token or CancellationToken(self.store.generation)
        if token.generation is None:
            token.generation = self.store.generation
        self._in_flight_token = token
        
        try:
            refs = self._collect_due_refs(now, include_lazy)
            report.polled = len(refs)
            
            if not refs:
                if include_lazy:
                    self._last_lazy_recheck = now
                return report
            
            if token.cancelled:
                report.cancelled = True
                return report
            
            try:
                updates = await self._fetch(refs, token)
            except asyncio.TimeoutError:
                return self._record_failure(report, f"Upstream fetch timed out after "
                                                    f"{self.fetch_timeout_seconds:g}s")
            except asyncio.CancelledError:
                if not token.cancelled:
                    raise
                report.cancelled = True
                self.logger.info(f"Sweep ({trigger}) cancelled during upstream fetch: window superseded")
                return report
            except Exception as e:
                return self._record_failure(report, f"Upstream fetch failed: {e}")
            
            self._consecutive_failures = 0
            if include_lazy:
                self._last_lazy_recheck = now
            self._apply_updates(report, refs, updates, now, token)
            return report
        finally:
            if self._in_flight_token is token:
                self._in_flight_token = None
            report.consecutive_failures = self._consecutive_failures
            report.execution_time_ms = self.log_execution_end("sweep", start_time, success=report.success)
            if report.promoted or not report.success:
                self.logger.info(f"Sweep ({trigger}): polled={report.polled} "
                                 f"promoted={len(report.promoted)} success={report.success}")
    
    async def _fetch(self, refs: List[EventRef], token: CancellationToken) -> List[ActualUpdate]:
        """
        Batched upstream call bounded by the fetch timeout.
        
        Cancelling `token` (a store reload) aborts the request instead of
        waiting for it to finish.
        """
        loop = asyncio.get_running_loop()
        fetch = asyncio.ensure_future(self.provider.fetch_actuals(refs))
        
        def abort() -> None:
            if not fetch.done():
                loop.call_soon_threadsafe(fetch.cancel)
        
        token.on_cancel(abort)
        try:
            return await asyncio.wait_for(fetch, timeout=self.fetch_timeout_seconds)
        finally:
            token.remove_callback(abort)
    
    def _collect_due_refs(self, now: datetime, include_lazy: bool) -> List[EventRef]:
        refs = []
        with self._registry_lock:
            for event_id, task in self._tasks.items():
                if task.state == TaskState.STOPPED and not include_lazy:
                    continue
                event = self.store.get(event_id)
                if event is None:
                    continue
                if task.state == TaskState.PENDING:
                    task.state = TaskState.POLLING
                task.attempts += 1
                task.last_polled_at = now
                refs.append(EventRef.from_event(event))
        return refs
    
    def _apply_updates(self, report: SweepReport, refs: List[EventRef], updates, now: datetime,
                       token: CancellationToken) -> None:
        by_id = {update.id: update for update in updates}
        
        for ref in refs:
            if token.cancelled:
                report.cancelled = True
                self.logger.info(f"Sweep ({report.trigger}) cancelled: window superseded")
                return
            
            update = by_id.get(ref.id)
            if update is not None and update.has_actual:
                if self.store.promote_actual(ref.id, update.actual, update.forecast, update.previous,
                                             generation=token.generation):
                    report.promoted.append(ref.id)
                current = self.store.get(ref.id)
                if current is not None and current.has_actual:
                    self.deregister(ref.id, resolved=True)
                continue
            
            start = TimeUtils.resolve_instant(ref.date, ref.time_of_day)
            if (now - start).total_seconds() / 60 > self.polling_ceiling_minutes and self._park(ref.id):
                report.moved_to_lazy.append(ref.id)
    
    def _record_failure(self, report: SweepReport, message: str) -> SweepReport:
        self._consecutive_failures += 1
        report.success = False
        report.error_message = message
        self.logger.warning(f"{message}; retrying next interval "
                            f"(consecutive failures: {self._consecutive_failures})")
        
        if self._consecutive_failures >= self.degraded_after_failures:
            self.logger.warning(f"Reconciliation degraded: {self._consecutive_failures} consecutive "
                                f"upstream failures, polling continues on schedule")
        return report
    
    def _on_store_reload(self, generation: int) -> None:
        token = self._in_flight_token
        if token is not None and token.generation != generation:
            token.cancel()
            self.logger.info(f"Cancelled in-flight sweep for superseded generation {token.generation}")
    
    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------
    
    def _lazy_recheck_due(self, now: datetime) -> bool:
        return self._last_lazy_recheck is None or now - self._last_lazy_recheck >= self.lazy_recheck_interval
    
    async def run_forever(self) -> None:
        """Sweep every `interval_seconds` until cancelled."""
        self.logger.info(f"Reconciliation loop started (interval {self.interval_seconds:g}s)")
        while True:
            now = TimeUtils.ensure_utc(self.clock())
            await self.safe_sweep(now=now, include_lazy=self._lazy_recheck_due(now))
            await asyncio.sleep(self.interval_seconds)
    
    def start(self) -> asyncio.Task:
        """Start the periodic loop on the running event loop."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.run_forever())
        return self._loop_task
    
    async def stop(self) -> None:
        """Cancel the periodic loop and wait for it to finish."""
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None
        self.logger.info("Reconciliation loop stopped")
