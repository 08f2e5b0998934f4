"""Data maintenance endpoints."""
import pytest

from app.models.records import IndexPoint, PriceSample
from app.utils.time_utils import parse_user_time


@pytest.mark.unit
class TestStatusAndRebackfill:
    async def test_status(self, api_client, scheduler):
        body = (await api_client.get("/api/index/status")).json()
        assert body["success"] is True
        assert body["data"]["backfillComplete"] is True
        scheduler.status.assert_called_once()

    async def test_rebackfill_started(self, api_client, scheduler):
        body = (await api_client.post("/api/index/rebackfill")).json()
        assert body["success"] is True
        scheduler.rebackfill.assert_called_once()

    async def test_rebackfill_already_running(self, api_client, scheduler):
        scheduler.rebackfill.return_value = False
        body = (await api_client.post("/api/index/rebackfill")).json()
        assert body == {"success": False, "message": "A backfill is already running"}


@pytest.mark.unit
class TestDeletes:
    async def test_delete_range(self, api_client, mem_store):
        ts = parse_user_time("2024-01-01 08:05", "Asia/Shanghai")
        await mem_store.insert_prices([PriceSample("AAAUSDT", ts, 1, 1, 1, 1)])
        await mem_store.save_index(IndexPoint(ts, 0.0, 0.0, 1, 0, 0, 0.0))

        resp = await api_client.delete(
            "/api/index/data", params={"start": "2024-01-01 08:00", "end": "2024-01-01 09:00"}
        )

        body = resp.json()
        assert resp.status_code == 200
        assert body["deletedIndexCount"] == 1
        assert body["deletedPriceTimePoints"] == 1
        assert body["utcStart"].startswith("2024-01-01T00:00")
        assert await mem_store.get_latest_index() is None

    async def test_delete_range_inverted_is_400(self, api_client):
        resp = await api_client.delete(
            "/api/index/data", params={"start": "2024-01-02 00:00", "end": "2024-01-01 00:00"}
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    async def test_delete_range_bad_time_is_400(self, api_client):
        resp = await api_client.delete("/api/index/data", params={"start": "nope", "end": "2024-01-01 00:00"})
        assert resp.status_code == 400

    async def test_delete_symbol(self, api_client, mem_store):
        await mem_store.insert_prices([PriceSample("AAAUSDT", 0, 1, 1, 1, 1)])
        body = (await api_client.delete("/api/index/symbol/aaausdt")).json()
        assert body["symbol"] == "AAAUSDT"
        assert body["deletedPriceCount"] == 1
        assert body["deletedBasePrice"] is False

    async def test_cleanup_requires_a_window(self, api_client):
        resp = await api_client.delete("/api/index/cleanup")
        assert resp.status_code == 400

    async def test_cleanup_last_hours(self, api_client):
        body = (await api_client.delete("/api/index/cleanup", params={"hours": 1})).json()
        assert body["success"] is True
        assert body["deletedCoinPriceCount"] == 0


@pytest.mark.unit
class TestGapsAndBackfill:
    async def test_missing(self, api_client):
        body = (await api_client.get("/api/index/missing", params={"days": 1})).json()
        assert body["success"] is True
        assert body["totalSymbols"] == 1
        assert body["symbolsWithMissing"] == 1
        assert body["queryRange"]["days"] == 1

    @pytest.mark.parametrize("days", [0, 61])
    async def test_repair_days_out_of_range(self, api_client, days):
        resp = await api_client.post("/api/index/repair", params={"days": days})
        assert resp.status_code == 400

    async def test_repair_nothing_to_fetch(self, api_client):
        body = (await api_client.post("/api/index/repair", params={"days": 1, "symbols": "aaausdt"})).json()
        assert body["success"] is True
        assert body["checkedSymbols"] == 1
        assert body["totalRepairedRecords"] == 0

    async def test_backfill_prices_validates_days(self, api_client):
        resp = await api_client.post("/api/index/backfill-prices", params={"days": 0})
        assert resp.status_code == 400
        assert resp.json()["message"] == "days must be between 1 and 365"
