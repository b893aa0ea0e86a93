"""
Main entry point for the Event Lifecycle & Analysis Reconciliation Engine.
"""

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from loguru import logger
from calendar_core.apis.market_data import (
    ActualsAPI,
    BaseActualsProvider,
    BaseCalendarSource,
    FMPActualsProvider,
    StaticActualsProvider,
)
from calendar_core.base.config import config
from calendar_core.base.exceptions import ConfigError
from calendar_core.base.models import LifecycleState
from calendar_core.utils.logging_setup import setup_logging
from lifecycle.classifier import EventClassifier
from lifecycle.matching import AnalysisMatcher
from lifecycle.reconciliation import ReconciliationScheduler, SweepReport
from lifecycle.store import EventStore, LifecycleView
from lifecycle.surprise import SurpriseEvaluator


class EventLifecycleSystem:
    """
    Wires the store, matcher, classifier and reconciliation scheduler together.
    
    With a calendar source the system loads its own event window before the
    reconciliation loop starts and re-fetches it every
    `calendar.refresh_interval_seconds`.
    """
    
    def __init__(self, provider: Optional[BaseActualsProvider] = None,
                 calendar_source: Optional[BaseCalendarSource] = None,
                 configure_logging: bool = True,
                 clock: Optional[Callable[[], datetime]] = None):
        if configure_logging:
            setup_logging()
        self.logger = logger.bind(system="event_lifecycle")
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        
        self.classifier = EventClassifier()
        self.matcher = AnalysisMatcher()
        self.evaluator = SurpriseEvaluator()
        self.store = EventStore(classifier=self.classifier, matcher=self.matcher, evaluator=self.evaluator)
        self.provider = provider or ActualsAPI()
        self.calendar_source = calendar_source
        self.scheduler = ReconciliationScheduler(self.store, self.provider, clock=self.clock)
        
        calendar_config = config.get_section("calendar")
        self.days_back = int(calendar_config.get("days_back", 1))
        self.days_ahead = int(calendar_config.get("days_ahead", 7))
        self.calendar_refresh_seconds = float(calendar_config.get("refresh_interval_seconds", 300))
    
    def refresh(self, events: Iterable[Mapping[str, Any]],
                analyses: Optional[Iterable[Any]] = None,
                window: Optional[Tuple[str, str]] = None) -> int:
        """
        Full page-level refresh: reload events (and analyses, when given) for a window.
        
        Any sweep still working on the previous window is cancelled.
        """
        count = self.store.load(events, window=window)
        if analyses is not None:
            self.store.load_analyses(analyses)
        self.scheduler.sync_registry(self.clock())
        return count
    
    def calendar_window(self, now: Optional[datetime] = None) -> Tuple[str, str]:
        """Date window covered by calendar loads, relative to `now`."""
        today = (now or self.clock()).astimezone(timezone.utc).date()
        return ((today - timedelta(days=self.days_back)).isoformat(),
                (today + timedelta(days=self.days_ahead)).isoformat())
    
    async def load_calendar(self) -> int:
        """
        Fetch the current window from the calendar source and reload the store.
        
        Raises:
            ConfigError: If the system has no calendar source
            UpstreamFetchFailure: If the calendar cannot be fetched; the
                previously loaded window stays in place
        """
        if self.calendar_source is None:
            raise ConfigError("No calendar source configured")
        
        start_date, end_date = self.calendar_window()
        events = await self.calendar_source.fetch_calendar(start_date, end_date)
        count = self.refresh(events, window=(start_date, end_date))
        self.logger.info(f"Calendar window {start_date}..{end_date} loaded with {count} events")
        return count
    
    async def safe_load_calendar(self) -> Optional[int]:
        """Calendar load that logs failures instead of raising."""
        try:
            return await self.load_calendar()
        except Exception as e:
            self.logger.error(f"Calendar refresh failed, keeping the current window: {e}")
            return None
    
    async def _refresh_calendar_forever(self) -> None:
        while True:
            await asyncio.sleep(self.calendar_refresh_seconds)
            if await self.safe_load_calendar() is not None:
                # A full refresh also re-checks events parked in lazy mode
                await self.scheduler.force_refresh()
    
    def current_view(self, now: Optional[datetime] = None, tz: Any = "UTC") -> LifecycleView:
        return self.store.current_view(now or self.clock(), tz)
    
    async def force_refresh(self) -> SweepReport:
        return await self.scheduler.force_refresh()
    
    async def run(self, duration_seconds: Optional[float] = None) -> None:
        """
        Run the reconciliation loop, optionally for a bounded time.
        
        The calendar window (if there is a source) is loaded before the first
        sweep so the loop starts with events to poll.
        """
        refresher = None
        if self.calendar_source is not None:
            await self.safe_load_calendar()
            refresher = asyncio.create_task(self._refresh_calendar_forever())
        
        self.scheduler.start()
        try:
            if duration_seconds is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration_seconds)
        finally:
            if refresher is not None:
                refresher.cancel()
                try:
                    await refresher
                except asyncio.CancelledError:
                    pass
            await self.scheduler.stop()


def build_fmp_system(configure_logging: bool = True) -> EventLifecycleSystem:
    """System backed by Financial Modeling Prep for both calendar and actuals."""
    fmp = FMPActualsProvider()
    return EventLifecycleSystem(provider=ActualsAPI(providers={"fmp": fmp}, primary_provider="fmp"),
                                calendar_source=fmp, configure_logging=configure_logging)


def _demo_data(now: datetime) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """A handful of events spread across every lifecycle bucket."""
    def stamp(delta_minutes: int) -> Tuple[str, str]:
        moment = now + timedelta(minutes=delta_minutes)
        return moment.strftime("%Y-%m-%d"), moment.strftime("%H:%M")
    
    events = []
    for event_id, title, delta, actual in [
        ("cpi", "CPI (YoY)", 120, None),
        ("nfp", "Non-Farm Payrolls", -20, None),
        ("pmi", "ISM Manufacturing PMI", -70, None),
        ("gdp", "GDP Growth Rate QoQ", -150, None),
        ("claims", "Initial Jobless Claims", -240, "221K"),
    ]:
        event_date, time_of_day = stamp(delta)
        events.append({
            "id": event_id, "title": title, "date": event_date, "time_of_day": time_of_day,
            "importance": "high", "category": "macro", "country": "US", "currency": "USD",
            "forecast": {"nfp": "200K", "pmi": "49.5", "gdp": "2.1%", "claims": "215K"}.get(event_id),
            "actual": actual,
        })
    
    analyses = [
        {"event_name_raw": "Non-Farm Payrolls (NFP)", "event_date": events[1]["date"],
         "kind": "pre_event", "payload": {"summary": "Consensus expects a cooler print.", "assets": ["DXY", "SPX"]}},
    ]
    return events, analyses


def _print_view(view: LifecycleView) -> None:
    print("\n" + "=" * 80)
    print(f"EVENT LIFECYCLE VIEW @ {view.generated_at:%Y-%m-%d %H:%M:%S} UTC")
    print("=" * 80)
    for state in LifecycleState:
        items = view.bucket(state)
        print(f"{state.value.upper():<14} {len(items)}")
        for item in items:
            extra = item.classification.countdown or f"{item.classification.minutes_elapsed:.0f}m ago"
            analysis = " [analysis]" if item.pre_analysis or item.post_analysis else ""
            actual = f" actual={item.event.actual} ({item.event.surprise.value})" if item.event.surprise else ""
            print(f"    - {item.event.title} ({extra}){actual}{analysis}")
    print("=" * 80)


async def run_demo(cycles: int = 2) -> None:
    """Demonstrate classification, matching and promotion on synthetic data."""
    now = datetime.now(timezone.utc)
    events, analyses = _demo_data(now)
    
    provider = StaticActualsProvider()
    system = EventLifecycleSystem(provider=provider)
    system.refresh(events, analyses)
    _print_view(system.current_view(now))
    
    provider.publish("nfp", "256K", forecast="200K")
    provider.publish("gdp", "1.6%")
    for _ in range(cycles):
        report = await system.force_refresh()
        system.logger.info(f"Forced sweep promoted {report.promoted}")
    
    _print_view(system.current_view())


async def run_live(system: EventLifecycleSystem, duration_seconds: Optional[float] = None) -> None:
    """Run against the configured upstream and print the view when done."""
    await system.run(duration_seconds)
    _print_view(system.current_view())


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Console entry point."""
    parser = argparse.ArgumentParser(description="Event lifecycle & analysis reconciliation engine")
    parser.add_argument("--demo", action="store_true", help="Run against synthetic events")
    parser.add_argument("--duration", type=float, default=None,
                        help="Seconds to run the reconciliation loop (default: forever)")
    args = parser.parse_args(argv)
    
    if args.demo:
        asyncio.run(run_demo())
        return
    
    if not config.fmp_api_key:
        logger.warning("FMP_API_KEY is not set, running the synthetic demo instead")
        asyncio.run(run_demo())
        return
    
    asyncio.run(run_live(build_fmp_system(), args.duration))


if __name__ == "__main__":
    main()
