import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from database import get_db
from main import app
from models.audit_log import AuditLog
from pipeline.builder import build_generation_pipeline
from support import FakeProvider, auth_header, lab_settings


@pytest_asyncio.fixture
async def calibration_client(session_maker):
    previous = app.state.generation_pipeline
    pipeline = build_generation_pipeline(lab_settings(), session_maker, http_client=FakeProvider().client())
    app.state.generation_pipeline = pipeline

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, session_maker

    app.dependency_overrides.pop(get_db, None)
    await pipeline.aclose()
    app.state.generation_pipeline = previous


CREATIVE_ANSWERS = [
    {"questionId": "style", "answer": "Creative and exploratory, please"},
    {"questionId": "formats", "answer": ["stories", "poems", "dialogue"]},
]


@pytest.mark.asyncio
async def test_create_then_fetch_latest_calibration(calibration_client):
    client, session_maker = calibration_client

    created = await client.post(
        "/api/calibrations",
        json={"mode": "quick", "answers": CREATIVE_ANSWERS},
        headers=auth_header("user_a"),
    )
    assert created.status_code == 200
    body = created.json()
    assert body["user_id"] == "user_a"
    assert body["mode"] == "quick"
    assert body["ranges"]["temperature"] == {"min": 0.7, "max": 1.0}
    assert body["ranges"]["maxTokens"]["max"] == 2500
    assert body["insights"][0] == "Your preferences lean toward creative and exploratory responses"

    latest = await client.get("/api/calibrations/latest", headers=auth_header("user_a"))
    assert latest.status_code == 200
    assert latest.json()["id"] == body["id"]

    async with session_maker() as db:
        rows = (await db.execute(select(AuditLog))).scalars().all()
    assert [row.event_type for row in rows] == ["calibration_completed"]
    assert rows[0].event_data["calibration_id"] == body["id"]


@pytest.mark.asyncio
async def test_calibration_requires_authentication(calibration_client):
    client, _ = calibration_client
    response = await client.post("/api/calibrations", json={"answers": CREATIVE_ANSWERS})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_calibration_rejects_empty_answers_and_unknown_mode(calibration_client):
    client, _ = calibration_client
    empty = await client.post("/api/calibrations", json={"answers": []}, headers=auth_header("user_a"))
    assert empty.status_code == 422

    bad_mode = await client.post(
        "/api/calibrations",
        json={"mode": "marathon", "answers": CREATIVE_ANSWERS},
        headers=auth_header("user_a"),
    )
    assert bad_mode.status_code == 422


@pytest.mark.asyncio
async def test_latest_calibration_missing_returns_404(calibration_client):
    client, _ = calibration_client
    response = await client.get("/api/calibrations/latest", headers=auth_header("nobody"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_health_endpoints(calibration_client):
    client, _ = calibration_client
    live = await client.get("/api/health/live")
    assert live.json() == {"alive": True}

    health = await client.get("/api/health")
    assert health.status_code == 200
    assert health.json()["services"] == ["database", "llm"]
