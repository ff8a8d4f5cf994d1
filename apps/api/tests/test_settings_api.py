from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from database import get_db
from main import app
from services.connectors import DeliveryResult
from services.scheduler import DAILY_ANALYSIS_JOB_ID, create_analysis_scheduler
from services.system_settings import seed_default_settings


WEBHOOK_URL = "https://open.feishu.cn/open-apis/bot/v2/hook/test-hook"


@pytest_asyncio.fixture
async def settings_client(session_maker):
    async with session_maker() as db:
        await seed_default_settings(db)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_db, None)
    app.state.scheduler = None


@pytest.mark.asyncio
async def test_defaults_are_seeded(settings_client):
    response = await settings_client.get("/settings")
    assert response.status_code == 200
    values = response.json()["settings"]
    assert values["cron_time"] == "0 8 * * *"
    assert "feishu_webhook" in values

    cron = await settings_client.get("/settings/cron_time")
    assert cron.json()["value"] == "0 8 * * *"
    assert (await settings_client.get("/settings/unknown")).status_code == 404


@pytest.mark.asyncio
async def test_update_webhook_validates_url(settings_client):
    saved = await settings_client.put("/settings/feishu_webhook", json={"value": f"  {WEBHOOK_URL} "})
    assert saved.status_code == 200
    assert saved.json()["value"] == WEBHOOK_URL

    rejected = await settings_client.put("/settings/feishu_webhook", json={"value": "ftp://example.com/hook"})
    assert rejected.status_code == 422

    cleared = await settings_client.put("/settings/feishu_webhook", json={"value": ""})
    assert cleared.status_code == 200
    assert cleared.json()["value"] == ""


@pytest.mark.asyncio
async def test_update_cron_time_validates_and_reschedules(settings_client):
    assert (await settings_client.put("/settings/cron_time", json={"value": "every day"})).status_code == 422
    assert (await settings_client.put("/settings/cron_time", json={"value": "61 8 * * *"})).status_code == 422
    assert (await settings_client.put("/settings/unknown_key", json={"value": "x"})).status_code == 400

    scheduler = create_analysis_scheduler("0 8 * * *")
    app.state.scheduler = scheduler
    with patch.object(scheduler, "reschedule_job") as reschedule_job:
        updated = await settings_client.put("/settings/cron_time", json={"value": "30  9 * * 1-5"})

    assert updated.status_code == 200
    assert updated.json()["value"] == "30 9 * * 1-5"
    reschedule_job.assert_called_once()
    assert reschedule_job.call_args.args[0] == DAILY_ANALYSIS_JOB_ID


@pytest.mark.asyncio
async def test_webhook_connectivity_check(settings_client):
    await settings_client.put("/settings/feishu_webhook", json={"value": WEBHOOK_URL})
    check = AsyncMock(return_value=DeliveryResult(success=True, response={"code": 0}))

    with patch("services.system_settings.check_feishu_webhook", check):
        saved_target = await settings_client.post("/settings/test-webhook", json={})
        explicit_target = await settings_client.post(
            "/settings/test-webhook", json={"webhook_url": "https://example.com/other"}
        )

    assert saved_target.status_code == 200
    assert saved_target.json()["success"] is True
    assert check.await_args_list[0].args[0] == WEBHOOK_URL
    assert explicit_target.status_code == 200
    assert check.await_args_list[1].args[0] == "https://example.com/other"


@pytest.mark.asyncio
async def test_webhook_check_requires_a_target(settings_client):
    await settings_client.put("/settings/feishu_webhook", json={"value": ""})
    response = await settings_client.post("/settings/test-webhook", json={})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_manual_trigger_reports_success_counts(settings_client):
    summary = {
        "success": True,
        "results": [
            {"keyword": "AI", "platform": "wechat", "success": True, "pushed": True, "report_id": 1},
            {"keyword": "露营", "platform": "xiaohongshu", "success": False, "pushed": False,
             "error": "xiaohongshu search failed: key expired", "report_id": 2},
        ],
    }
    with patch("routers.cron.run_daily_analysis_service", AsyncMock(return_value=summary)):
        response = await settings_client.post("/cron/daily-analysis")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "completed, 1/2 succeeded"
    assert body["results"][1]["error"] == "xiaohongshu search failed: key expired"


@pytest.mark.asyncio
async def test_manual_trigger_surfaces_run_failure(settings_client):
    summary = {"success": False, "results": [], "error": "Feishu webhook is not configured"}
    with patch("routers.cron.run_daily_analysis_service", AsyncMock(return_value=summary)):
        response = await settings_client.post("/cron/daily-analysis")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Feishu webhook is not configured", "results": []}


@pytest.mark.asyncio
async def test_manual_trigger_hides_crash_details(settings_client):
    crash = AsyncMock(side_effect=RuntimeError("database is locked"))
    with patch("routers.cron.run_daily_analysis_service", crash):
        response = await settings_client.post("/cron/daily-analysis")

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert "database is locked" not in response.text


@pytest.mark.asyncio
async def test_scheduler_status(settings_client):
    app.state.scheduler = None
    response = await settings_client.get("/cron/daily-analysis")
    assert response.status_code == 200
    body = response.json()
    assert body["cron_time"] == "0 8 * * *"
    assert body["running"] is False
    assert body["next_run_at"] is None


@pytest.mark.asyncio
async def test_health_endpoints(settings_client):
    live = await settings_client.get("/health/live")
    assert live.json() == {"alive": True}

    root = await settings_client.get("/")
    assert root.json()["name"] == "Topic Radar API"


@pytest.mark.asyncio
async def test_readiness_requires_a_saved_webhook(settings_client, session_maker):
    await settings_client.put("/settings/feishu_webhook", json={"value": ""})
    with patch("routers.health.async_session_maker", session_maker):
        response = await settings_client.get("/health/ready")

    assert response.status_code == 503
    assert "feishu_webhook" in response.json()["missing"]
