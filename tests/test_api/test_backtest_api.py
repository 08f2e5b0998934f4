"""Backtest and optimizer endpoints over an empty store."""
import pytest


@pytest.mark.unit
class TestShortTopN:
    async def test_requires_entry_hour(self, api_client):
        resp = await api_client.get("/api/index/backtest/short-top10", params={"totalAmount": 1000})
        assert resp.status_code == 422

    async def test_invalid_entry_hour_is_400(self, api_client):
        resp = await api_client.get(
            "/api/index/backtest/short-top10", params={"entryHour": 25, "totalAmount": 1000}
        )
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "entryHour must be between 0 and 23"}

    async def test_unknown_timezone_is_400(self, api_client):
        resp = await api_client.get(
            "/api/index/backtest/short-top10",
            params={"entryHour": 8, "totalAmount": 1000, "timezone": "Mars/Olympus"},
        )
        assert resp.status_code == 400

    async def test_empty_store_skips_every_day(self, api_client):
        resp = await api_client.get(
            "/api/index/backtest/short-top10",
            params={"entryHour": 8, "totalAmount": 1000, "days": 3, "topN": 5},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["params"]["amountPerCoin"] == 200.0
        assert body["summary"]["totalDays"] == 3
        assert body["summary"]["validDays"] == 0
        assert len(body["skippedDays"]) == 3
        assert body["dailyResults"] == []


@pytest.mark.unit
class TestOptimizer:
    async def test_optimize(self, api_client):
        body = (await api_client.get(
            "/api/index/backtest/optimize",
            params={"days": 2, "entryHours": "8", "holdHours": "24"},
        )).json()
        assert body["success"] is True
        assert body["totalCombinations"] == 20
        assert {r["entryHour"] for r in body["topStrategies"]} == {8}

    async def test_optimize_invalid_days(self, api_client):
        resp = await api_client.get("/api/index/backtest/optimize", params={"days": 0})
        assert resp.status_code == 400

    async def test_optimize_daily_page_size_bounds(self, api_client):
        resp = await api_client.get("/api/index/backtest/optimize-daily", params={"pageSize": 0})
        assert resp.status_code == 422

    async def test_optimize_daily_empty(self, api_client):
        body = (await api_client.get(
            "/api/index/backtest/optimize-daily",
            params={"days": 1, "entryHours": "0", "holdHours": "24"},
        )).json()
        assert body["pagination"]["totalDays"] == 0
        assert body["days"] == []

    async def test_clear_cache(self, api_client):
        body = (await api_client.post("/api/index/backtest/clear-cache")).json()
        assert body == {"success": True, "message": "Price cache cleared"}
