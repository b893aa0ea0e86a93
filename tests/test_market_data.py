"""
Tests for the actuals providers.
"""

import pytest

from calendar_core.apis.market_data import ActualsAPI, BaseActualsProvider, FMPActualsProvider, StaticActualsProvider
from calendar_core.base.exceptions import APIError, UpstreamFetchFailure
from calendar_core.base.models import EventCategory, EventRef


def ref(event_id="evt-1", title="Non-Farm Payrolls", date="2024-03-15", **kwargs):
    return EventRef(id=event_id, title=title, date=date, **kwargs)


class BrokenProvider(BaseActualsProvider):
    async def fetch_actuals(self, refs):
        raise UpstreamFetchFailure("boom")


@pytest.fixture
def fmp():
    return FMPActualsProvider(api_key="test", base_url="http://fmp.invalid/stable")


class TestFMPMatching:
    """Test cases for FMP row matching."""
    
    def test_economic_row_prefix_match(self, fmp):
        rows = [
            {"event": "Nonfarm Payrolls", "date": "2024-03-15 12:30:00", "actual": 275},
            {"event": "Non-Farm Payrolls (Feb)", "date": "2024-03-15 12:30:00", "actual": 275, "estimate": 200},
        ]
        assert fmp.match_economic_row(ref(), rows) is rows[1]
    
    def test_economic_row_provider_name_shorter(self, fmp):
        rows = [{"event": "ISM Manufacturing", "date": "2024-03-15"}]
        assert fmp.match_economic_row(ref(title="ISM Manufacturing PMI (Mar)"), rows) is rows[0]
    
    def test_economic_row_requires_same_date(self, fmp):
        rows = [{"event": "Non-Farm Payrolls", "date": "2024-03-14 12:30:00"}]
        assert fmp.match_economic_row(ref(), rows) is None
    
    def test_economic_row_skips_bad_rows(self, fmp):
        rows = [{"event": "", "date": "2024-03-15"}, {"event": "Non-Farm Payrolls", "date": "not a date"}]
        assert fmp.match_economic_row(ref(), rows) is None
    
    def test_earnings_row_symbol_and_date(self):
        rows = [
            {"symbol": "AAPL", "date": "2024-02-01", "epsActual": 2.1},
            {"symbol": "AAPL", "date": "2024-03-15", "epsActual": 2.18, "epsEstimated": 2.1},
        ]
        earnings = ref(title="AAPL Earnings", category=EventCategory.EARNINGS)
        assert FMPActualsProvider.match_earnings_row(earnings, rows) is rows[1]
        
        explicit = ref(title="Apple Q1", category=EventCategory.EARNINGS, symbol="AAPL")
        assert FMPActualsProvider.match_earnings_row(explicit, rows) is rows[1]
    
    def test_economic_row_to_event(self):
        event = FMPActualsProvider.economic_row_to_event({
            "event": "CPI (YoY)", "date": "2024-03-12 00:00:00", "country": "US",
            "impact": "Medium", "actual": "", "estimate": "3.1%",
        })
        
        assert event["id"] == "econ-2024-03-12-us-cpi-yoy"
        assert event["time_of_day"] is None
        assert event["importance"] == "medium"
        assert event["category"] == "macro"
        assert event["actual"] is None
        assert event["forecast"] == "3.1%"
        
        assert FMPActualsProvider.economic_row_to_event({"event": "", "date": "2024-03-12"}) is None
    
    def test_earnings_row_to_event(self):
        event = FMPActualsProvider.earnings_row_to_event({
            "symbol": "NVDA", "date": "2024-02-21", "time": "21:05", "epsActual": 5.16, "eps": 4.02,
        })
        
        assert event["title"] == "NVDA Earnings"
        assert event["time_of_day"] == "21:05"
        assert event["actual"] == 5.16
        assert FMPActualsProvider.earnings_row_to_event({"symbol": "NVDA", "date": "21/02/2024"}) is None
        assert FMPActualsProvider.earnings_row_to_event({"date": "2024-02-21"}) is None
    
    def test_normalize_response(self):
        assert FMPActualsProvider.normalize_response([{"a": 1}]) == [{"a": 1}]
        assert FMPActualsProvider.normalize_response({"data": [{"a": 1}]}) == [{"a": 1}]
        assert FMPActualsProvider.normalize_response({"Error Message": "Invalid key"}) == []
        assert FMPActualsProvider.normalize_response(None) == []


class TestFMPFetch:
    """Test cases for FMP batch fetches with the HTTP layer stubbed out."""
    
    @pytest.mark.asyncio
    async def test_routes_by_category(self, fmp, monkeypatch):
        requested = []
        
        async def fake_calendar(endpoint, start_date, end_date):
            requested.append((endpoint, start_date, end_date))
            if endpoint == "economic-calendar":
                return [{"event": "Non-Farm Payrolls", "date": "2024-03-15 12:30:00",
                         "actual": "", "estimate": 200, "previous": 180}]
            return [{"symbol": "AAPL", "date": "2024-03-15", "epsActual": 2.18,
                     "epsEstimated": 2.1, "eps": 1.9}]
        
        monkeypatch.setattr(fmp, "_get_calendar", fake_calendar)
        
        updates = await fmp.fetch_actuals([
            ref(),
            ref(event_id="aapl", title="AAPL", category=EventCategory.EARNINGS),
        ])
        by_id = {u.id: u for u in updates}
        
        assert requested == [("economic-calendar", "2024-03-15", "2024-03-15"),
                             ("earnings-calendar", "2024-03-15", "2024-03-15")]
        assert not by_id["evt-1"].has_actual
        assert by_id["evt-1"].forecast == 200
        assert by_id["aapl"].actual == 2.18
        assert by_id["aapl"].previous == 1.9
    
    @pytest.mark.asyncio
    async def test_crypto_and_ipo_refs_not_queried(self, fmp, monkeypatch):
        requested = []
        
        async def fake_calendar(endpoint, start_date, end_date):
            requested.append(endpoint)
            return [{"event": "Bitcoin ETF Decision", "date": "2024-03-15", "actual": "approved"}]
        
        monkeypatch.setattr(fmp, "_get_calendar", fake_calendar)
        
        updates = await fmp.fetch_actuals([
            ref(event_id="btc", title="Bitcoin ETF Decision", category=EventCategory.CRYPTO),
            ref(event_id="ipo", title="Reddit IPO", category=EventCategory.IPO),
        ])
        
        assert updates == []
        assert requested == []
    
    @pytest.mark.asyncio
    async def test_fetch_calendar_maps_both_calendars(self, fmp, monkeypatch):
        async def fake_calendar(endpoint, start_date, end_date):
            assert (start_date, end_date) == ("2024-03-14", "2024-03-22")
            if endpoint == "economic-calendar":
                return [
                    {"event": "Non-Farm Payrolls", "date": "2024-03-15 12:30:00", "country": "US",
                     "impact": "High", "estimate": 200, "previous": 180, "actual": None},
                    {"event": "Broken Row", "date": "soon"},
                ]
            return [{"symbol": "AAPL", "date": "2024-03-15", "time": "amc", "epsEstimated": 2.1}]
        
        monkeypatch.setattr(fmp, "_get_calendar", fake_calendar)
        
        events = await fmp.fetch_calendar("2024-03-14", "2024-03-22")
        
        assert [e["id"] for e in events] == ["econ-2024-03-15-us-non-farm-payrolls", "earn-aapl-2024-03-15"]
        assert events[0]["time_of_day"] == "12:30"
        assert events[0]["importance"] == "high"
        assert events[1]["time_of_day"] is None
        assert events[1]["symbol"] == "AAPL"
    
    @pytest.mark.asyncio
    async def test_fetch_calendar_fails_whole(self, fmp, monkeypatch):
        async def fake_calendar(endpoint, start_date, end_date):
            if endpoint == "earnings-calendar":
                raise UpstreamFetchFailure("HTTP 500")
            return [{"event": "CPI", "date": "2024-03-15 12:30:00"}]
        
        monkeypatch.setattr(fmp, "_get_calendar", fake_calendar)
        
        with pytest.raises(UpstreamFetchFailure):
            await fmp.fetch_calendar("2024-03-14", "2024-03-22")
    
    def test_missing_api_key(self, monkeypatch):
        from calendar_core.base.config import config
        monkeypatch.setattr(config, "fmp_api_key", None)
        with pytest.raises(APIError):
            FMPActualsProvider()


class TestStaticProvider:
    """Test cases for the in-memory provider."""
    
    @pytest.mark.asyncio
    async def test_serves_known_refs_only(self):
        provider = StaticActualsProvider({"evt-1": {"actual": "275K"}})
        
        updates = await provider.fetch_actuals([ref(), ref(event_id="evt-2")])
        
        assert [u.id for u in updates] == ["evt-1"]
        assert provider.calls == 1
    
    @pytest.mark.asyncio
    async def test_publish(self):
        provider = StaticActualsProvider()
        assert await provider.fetch_actuals([ref()]) == []
        
        provider.publish("evt-1", "3.2%", forecast="3.1%")
        updates = await provider.fetch_actuals([ref()])
        
        assert updates[0].actual == "3.2%"
        assert updates[0].forecast == "3.1%"


class TestActualsAPI:
    """Test cases for provider fallback."""
    
    @pytest.mark.asyncio
    async def test_falls_back_to_secondary(self):
        backup = StaticActualsProvider({"evt-1": {"actual": "1"}})
        api = ActualsAPI(providers={"fmp": BrokenProvider(), "static": backup}, primary_provider="fmp")
        
        updates = await api.fetch_actuals([ref()])
        
        assert updates[0].actual == "1"
        assert backup.calls == 1
    
    @pytest.mark.asyncio
    async def test_all_providers_fail(self):
        api = ActualsAPI(providers={"a": BrokenProvider(), "b": BrokenProvider()}, primary_provider="a")
        with pytest.raises(UpstreamFetchFailure):
            await api.fetch_actuals([ref()])
    
    @pytest.mark.asyncio
    async def test_empty_batch(self):
        api = ActualsAPI(providers={"a": BrokenProvider()})
        assert await api.fetch_actuals([]) == []
    
    def test_unknown_primary_uses_first(self):
        api = ActualsAPI(providers={"static": StaticActualsProvider()}, primary_provider="fmp")
        assert api.primary_provider == "static"
    
    def test_requires_a_provider(self):
        with pytest.raises(APIError):
            ActualsAPI(providers={})
