"""
Analysis Matcher - links externally produced analysis records to calendar events.

The analysis agent writes records keyed by the event name and date it saw,
which drift from the calendar feed: punctuation, parenthetical abbreviations
and one-day timezone shifts are all common. Lookup therefore runs through
progressively looser steps:

1. exact (date, normalized name)
2. same name on neighbouring dates (date tolerance)
3. substring / superset name on the event's own date
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from calendar_core.base.component import BaseComponent
from calendar_core.base.models import AnalysisKind, AnalysisRecord, CalendarEvent
from calendar_core.base.exceptions import InvalidTimestamp
from calendar_core.utils.time_utils import TimeUtils
from .name_normalizer import NameNormalizer


IndexKey = Tuple[str, str]

_ASSET_KEYS = ("assets", "tradingview_assets", "primary_affected_assets")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def payload_completeness(record: AnalysisRecord) -> int:
    """Score a record by whether its payload has a summary and affected assets."""
    payload = record.payload or {}
    score = 0
    if payload.get("summary"):
        score += 1
    if any(payload.get(key) for key in _ASSET_KEYS):
        score += 1
    return score


def _created_sort_key(record: AnalysisRecord) -> datetime:
    if record.created_at is None:
        return _EPOCH
    return TimeUtils.ensure_utc(record.created_at)


class AnalysisMatcher(BaseComponent):
    """
    Index of analysis records with tolerant lookup by calendar event.
    """
    
    def __init__(self, records: Optional[Iterable[AnalysisRecord]] = None):
        super().__init__(name="AnalysisMatcher", config_section="matching")
        self.date_tolerance_days = int(self.get_config_value("date_tolerance_days", 1))
        self._index: Dict[IndexKey, List[AnalysisRecord]] = {}
        self._names_by_date: Dict[str, List[str]] = {}
        
        if records is not None:
            self.build_index(records)
    
    def build_index(self, records: Iterable[AnalysisRecord]) -> Dict[IndexKey, List[AnalysisRecord]]:
        """
        Build the (date, normalized name) -> records index.
        
        Records under one key are ordered best first: most complete payload,
        then most recently created.
        
        Args:
            records: Analysis records from the analysis agent
            
        Returns:
            The new index
        """
        index: Dict[IndexKey, List[AnalysisRecord]] = {}
        skipped = 0
        
        for record in records:
            try:
                record_date = TimeUtils.parse_date(record.event_date[:10]).isoformat()
            except InvalidTimestamp:
                skipped += 1
                self.logger.warning(f"Skipping analysis with bad date: {record.event_name_raw!r} "
                                    f"{record.event_date!r}")
                continue
            
            name = NameNormalizer.normalize(record.event_name_raw)
            if not name:
                skipped += 1
                continue
            
            index.setdefault((record_date, name), []).append(record)
        
        for bucket in index.values():
            bucket.sort(key=lambda r: (payload_completeness(r), _created_sort_key(r)), reverse=True)
        
        names_by_date: Dict[str, List[str]] = {}
        for record_date, name in sorted(index):
            names_by_date.setdefault(record_date, []).append(name)
        
        self._index = index
        self._names_by_date = names_by_date
        
        self.logger.info(f"Indexed {sum(len(b) for b in index.values())} analyses "
                         f"under {len(index)} keys ({skipped} skipped)")
        return index
    
    @property
    def index(self) -> Dict[IndexKey, List[AnalysisRecord]]:
        return self._index
    
    def match(self, event: CalendarEvent, kind: Optional[AnalysisKind] = None) -> Optional[AnalysisRecord]:
        """
        Resolve a calendar event to its analysis record.
        
        Args:
            event: Calendar event
            kind: Restrict to pre- or post-event analyses; None accepts either
            
        Returns:
            Best matching record, or None when no analysis exists yet
        """
        name = NameNormalizer.normalize(event.title)
        if not name or not self._index:
            return None
        
        for key in self._candidate_keys(event.date, name):
            record = self._pick(self._index.get(key), kind)
            if record is not None:
                return record
        
        return None
    
    def match_pair(self, event: CalendarEvent) -> Tuple[Optional[AnalysisRecord], Optional[AnalysisRecord]]:
        """Return the (pre-event, post-event) analyses for an event."""
        return (
            self.match(event, AnalysisKind.PRE_EVENT),
            self.match(event, AnalysisKind.POST_EVENT),
        )
    
    def _candidate_keys(self, event_date: str, name: str) -> Iterable[IndexKey]:
        yield (event_date, name)
        
        for offset in range(1, self.date_tolerance_days + 1):
            for shift in (-offset, offset):
                yield (TimeUtils.shift_date(event_date, shift), name)
        
        for candidate in self._names_by_date.get(event_date, []):
            if candidate != name and (candidate in name or name in candidate):
                yield (event_date, candidate)
    
    @staticmethod
    def _pick(records: Optional[List[AnalysisRecord]], kind: Optional[AnalysisKind]) -> Optional[AnalysisRecord]:
        if not records:
            return None
        if kind is None:
            return records[0]
        return next((r for r in records if r.kind == kind), None)
