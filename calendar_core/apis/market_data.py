"""
Upstream market data providers.

A calendar source supplies the scheduled events for a date window. The
reconciliation sweep hands a batch of event references to an actuals provider
and gets back whatever release values the provider currently knows about.
"""

import asyncio
import re
import aiohttp
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple
from loguru import logger

from ..base.config import config
from ..base.exceptions import APIError, InvalidTimestamp, UpstreamFetchFailure
from ..base.models import ActualUpdate, EventCategory, EventRef, has_value
from ..utils.time_utils import TimeUtils


_IMPACT_LEVELS = {"high": "high", "3": "high", "medium": "medium", "2": "medium"}


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


class BaseActualsProvider(ABC):
    """Abstract base class for actuals providers."""
    
    name: str = "base"
    
    @abstractmethod
    async def fetch_actuals(self, refs: List[EventRef]) -> List[ActualUpdate]:
        """
        Fetch current release values for a batch of events.
        
        Must be idempotent and safe to call repeatedly with the same refs.
        References the provider knows nothing about may be omitted from the
        result.
        """
        pass


class StaticActualsProvider(BaseActualsProvider):
    """
    In-memory provider backed by a dictionary of event id -> update.
    
    Used for demos and for replaying recorded provider answers.
    """
    
    def __init__(self, updates: Optional[Dict[str, Dict[str, Any]]] = None, latency_seconds: float = 0.0):
        self.name = "static"
        self.latency_seconds = latency_seconds
        self.calls = 0
        self._updates: Dict[str, Dict[str, Any]] = dict(updates or {})
        self.logger = logger.bind(provider="static")
    
    def publish(self, event_id: str, actual: Any, forecast: Any = None, previous: Any = None) -> None:
        """Make a release value visible to subsequent fetches."""
        self._updates[event_id] = {"actual": actual, "forecast": forecast, "previous": previous}
    
    async def fetch_actuals(self, refs: List[EventRef]) -> List[ActualUpdate]:
        self.calls += 1
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        
        results = []
        for ref in refs:
            known = self._updates.get(ref.id)
            if known is not None:
                results.append(ActualUpdate(id=ref.id, **known))
        
        self.logger.debug(f"Served {len(results)}/{len(refs)} refs")
        return results


class BaseCalendarSource(ABC):
    """Abstract base class for sources of the scheduled event calendar."""
    
    @abstractmethod
    async def fetch_calendar(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """
        Fetch the scheduled events between two dates (inclusive).
        
        Returns:
            Raw event dicts ready for `EventStore.load`
        """
        pass


class FMPActualsProvider(BaseActualsProvider, BaseCalendarSource):
    """
    Financial Modeling Prep provider.
    
    Serves both the event calendar for a date window and the release values
    of events already on it. Macro releases are looked up in the economic
    calendar by date and a name prefix match; earnings by ticker symbol and
    date. FMP publishes no actuals for crypto or IPO events.
    """
    
    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.name = "fmp"
        self.api_key = api_key or config.fmp_api_key
        self.base_url = base_url or config.get("market_data.fmp.base_url",
                                               "https://financialmodelingprep.com/stable")
        self.name_prefix_length = config.get("market_data.fmp.name_prefix_length", 15)
        self.request_timeout = config.get("market_data.fmp.request_timeout_seconds", 10)
        self._session = session
        self.logger = logger.bind(provider="fmp")
        
        if not self.api_key:
            raise APIError("FMP API key not configured")
    
    async def fetch_calendar(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """
        Fetch economic and earnings events for a window.
        
        Raises:
            UpstreamFetchFailure: If either calendar cannot be fetched, so a
                failed refresh never replaces a good window with a partial one
        """
        economic = await self._get_calendar("economic-calendar", start_date, end_date)
        earnings = await self._get_calendar("earnings-calendar", start_date, end_date)
        
        events = [event for event in map(self.economic_row_to_event, economic) if event is not None]
        events += [event for event in map(self.earnings_row_to_event, earnings) if event is not None]
        
        self.logger.info(f"Fetched {len(events)} calendar events for {start_date}..{end_date} "
                         f"({len(economic)} economic rows, {len(earnings)} earnings rows)")
        return events
    
    async def fetch_actuals(self, refs: List[EventRef]) -> List[ActualUpdate]:
        macro_refs = [ref for ref in refs if ref.category == EventCategory.MACRO]
        earnings_refs = [ref for ref in refs if ref.category == EventCategory.EARNINGS]
        unsupported = len(refs) - len(macro_refs) - len(earnings_refs)
        if unsupported:
            self.logger.debug(f"Skipping {unsupported} crypto/IPO refs: no FMP actuals for them")
        
        results: List[ActualUpdate] = []
        
        if macro_refs:
            rows = await self._get_calendar("economic-calendar", *self._date_span(macro_refs))
            for ref in macro_refs:
                row = self.match_economic_row(ref, rows)
                if row is not None:
                    results.append(ActualUpdate(
                        id=ref.id,
                        actual=row.get("actual") if has_value(row.get("actual")) else None,
                        forecast=row.get("estimate", row.get("forecast")),
                        previous=row.get("previous"),
                    ))
        
        if earnings_refs:
            rows = await self._get_calendar("earnings-calendar", *self._date_span(earnings_refs))
            for ref in earnings_refs:
                row = self.match_earnings_row(ref, rows)
                if row is not None:
                    results.append(ActualUpdate(
                        id=ref.id,
                        actual=row.get("epsActual"),
                        forecast=row.get("epsEstimated", row.get("epsEstimate")),
                        previous=row.get("eps"),
                    ))
        
        self.logger.info(f"Checked {len(refs)} events, "
                         f"{sum(1 for r in results if r.has_actual)} have actual data")
        return results
    
    @staticmethod
    def _date_span(refs: List[EventRef]) -> Tuple[str, str]:
        dates = sorted({ref.date for ref in refs})
        return dates[0], dates[-1]
    
    async def _get_calendar(self, endpoint: str, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Fetch one calendar endpoint for an inclusive date range."""
        params = {"from": start_date, "to": end_date, "apikey": self.api_key}
        url = f"{self.base_url}/{endpoint}"
        
        try:
            if self._session is not None:
                return await self._request(self._session, url, params)
            
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                return await self._request(session, url, params)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamFetchFailure(f"FMP {endpoint} request failed: {e}")
    
    async def _request(self, session: aiohttp.ClientSession, url: str,
                       params: Dict[str, str]) -> List[Dict[str, Any]]:
        async with session.get(url, params=params) as response:
            if response.status != 200:
                raise UpstreamFetchFailure(f"FMP returned HTTP {response.status} for {url}")
            data = await response.json(content_type=None)
        return self.normalize_response(data)
    
    @staticmethod
    def normalize_response(data: Any) -> List[Dict[str, Any]]:
        """FMP answers with either a bare list or {"data": [...]}."""
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            return data["data"]
        return []
    
    @staticmethod
    def economic_row_to_event(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Map an economic calendar row onto the event shape.
        
        Ids are derived from date, country and name so they stay stable
        across refreshes of the same window.
        """
        title = str(row.get("event") or row.get("title") or row.get("name") or "").strip()
        if not title:
            return None
        
        try:
            event_date, time_of_day = TimeUtils.split_provider_timestamp(row.get("date"))
        except InvalidTimestamp as e:
            logger.debug(f"Skipping economic row {title!r}: {e}")
            return None
        
        country = row.get("country") or None
        return {
            "id": f"econ-{event_date}-{(country or 'xx').lower()}-{_slug(title)}",
            "title": title,
            "date": event_date,
            "time_of_day": time_of_day,
            "importance": _IMPACT_LEVELS.get(str(row.get("impact", "")).lower(), "low"),
            "category": EventCategory.MACRO.value,
            "country": country,
            "currency": row.get("currency") or None,
            "previous": row.get("previous"),
            "forecast": row.get("estimate", row.get("forecast")),
            "actual": row.get("actual") if has_value(row.get("actual")) else None,
        }
    
    @staticmethod
    def earnings_row_to_event(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Map an earnings calendar row onto the event shape (time is often "bmo"/"amc")."""
        symbol = str(row.get("symbol") or "").strip()
        if not symbol or not row.get("date"):
            return None
        
        event_date = str(row["date"])[:10]
        try:
            TimeUtils.parse_date(event_date)
        except InvalidTimestamp as e:
            logger.debug(f"Skipping earnings row {symbol}: {e}")
            return None
        
        time_of_day = row.get("time")
        if time_of_day is not None:
            try:
                time_of_day = TimeUtils.parse_time_of_day(str(time_of_day)).strftime("%H:%M")
            except InvalidTimestamp:
                time_of_day = None
        
        return {
            "id": f"earn-{symbol.lower()}-{event_date}",
            "title": f"{symbol} Earnings",
            "date": event_date,
            "time_of_day": time_of_day,
            "importance": "medium",
            "category": EventCategory.EARNINGS.value,
            "country": "US",
            "symbol": symbol,
            "previous": row.get("eps"),
            "forecast": row.get("epsEstimated", row.get("epsEstimate")),
            "actual": row.get("epsActual") if has_value(row.get("epsActual")) else None,
        }
    
    def match_economic_row(self, ref: EventRef, rows: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """
        Find the economic calendar row for `ref`.
        
        Rows match on release date and when either name contains the first
        characters of the other.
        """
        wanted = ref.title.lower()
        for row in rows:
            row_name = str(row.get("event") or row.get("title") or row.get("name") or "").lower()
            if not row_name:
                continue
            
            try:
                row_date, _ = TimeUtils.split_provider_timestamp(row.get("date"))
            except InvalidTimestamp:
                continue
            if row_date != ref.date:
                continue
            
            if (wanted[:self.name_prefix_length] in row_name
                    or row_name[:self.name_prefix_length] in wanted):
                return row
        return None
    
    @staticmethod
    def match_earnings_row(ref: EventRef, rows: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Earnings rows match on ticker symbol and report date."""
        symbol = ref.symbol or ref.title.split(" ")[0]
        for row in rows:
            if row.get("symbol") == symbol and str(row.get("date", ""))[:10] == ref.date:
                return row
        return None


class ActualsAPI(BaseActualsProvider):
    """
    Unified actuals API with provider fallback.
    """
    
    def __init__(self, providers: Optional[Dict[str, BaseActualsProvider]] = None,
                 primary_provider: Optional[str] = None):
        if providers is None:
            providers = {}
            if config.fmp_api_key:
                providers["fmp"] = FMPActualsProvider()
        
        self.name = "actuals_api"
        self.providers = providers
        self.primary_provider = primary_provider or config.get("market_data.primary_provider", "fmp")
        self.logger = logger.bind(service="actuals_api")
        
        if not self.providers:
            raise APIError("No actuals providers configured")
        if self.primary_provider not in self.providers:
            self.primary_provider = next(iter(self.providers))
    
    async def fetch_actuals(self, refs: List[EventRef]) -> List[ActualUpdate]:
        """
        Fetch actuals from the primary provider, falling back to the others.
        
        Raises:
            UpstreamFetchFailure: If every provider fails
        """
        if not refs:
            return []
        
        try:
            return await self.providers[self.primary_provider].fetch_actuals(refs)
        except Exception as e:
            self.logger.error(f"Primary provider {self.primary_provider} failed: {e}")
        
        for fallback_name, fallback_provider in self.providers.items():
            if fallback_name == self.primary_provider:
                continue
            try:
                self.logger.info(f"Trying fallback provider: {fallback_name}")
                return await fallback_provider.fetch_actuals(refs)
            except Exception as fallback_error:
                self.logger.error(f"Fallback provider {fallback_name} failed: {fallback_error}")
        
        raise UpstreamFetchFailure(f"All providers failed for {len(refs)} events")
