from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from datastore.collections import DataStore, build_store
from services.router import ResolutionRouter
from settings import get_settings

START = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _cached(router: ResolutionRouter):
    def factory() -> ResolutionRouter:
        return router

    factory.cache_clear = lambda: None  # type: ignore[attr-defined]
    return factory


@pytest.fixture
def store() -> DataStore:
    store = build_store(None, raw_max_documents=100, raw_max_bytes=100_000)
    for minutes, temperature in ((0, 20.0), (30, 22.0), (60, 24.0)):
        store.raw.insert(
            {
                "temperature": temperature,
                "humidity": 50.0,
                "timestamp": START + timedelta(minutes=minutes),
            }
        )
    store.hourly.insert(
        {
            "temperature": {"avg": 22.0, "min": 20.0, "max": 24.0},
            "humidity": {"avg": 50.0, "min": 50.0, "max": 50.0},
            "timestamp": START,
            "count": 3,
        }
    )
    store.daily.insert(
        {
            "temperature": {"avg": 22.0, "min": 20.0, "max": 24.0},
            "humidity": {"avg": 50.0, "min": 50.0, "max": 50.0},
            "date": START,
            "count": 3,
        }
    )
    return store


@pytest.fixture
def api_client(store: DataStore, monkeypatch) -> Iterator[TestClient]:
    build_test_router = _cached(ResolutionRouter(store))

    monkeypatch.setenv("INGEST_ENABLED", "false")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    get_settings.cache_clear()
    monkeypatch.setattr("app.main.build_default_router", build_test_router)
    monkeypatch.setattr("app.api.build_default_router", build_test_router)

    app = create_app()
    with TestClient(app) as client:
        yield client

    get_settings.cache_clear()


def test_data_for_short_range_returns_raw_rows(api_client: TestClient) -> None:
    response = api_client.get(
        "/api/data",
        params={"start": "2024-06-01T00:00:00Z", "end": "2024-06-01T12:00:00Z"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert [row["temperature"] for row in payload] == [20.0, 22.0, 24.0]
    assert set(payload[0]) == {"temperature", "humidity", "timestamp"}


def test_data_for_multi_day_range_returns_hourly_rows(api_client: TestClient) -> None:
    response = api_client.get(
        "/api/data",
        params={"start": "2024-06-01T00:00:00Z", "end": "2024-06-08T00:00:00Z"},
    )

    assert response.status_code == 200
    [row] = response.json()
    assert row["count"] == 3
    assert row["temperature"] == {"avg": 22.0, "min": 20.0, "max": 24.0}
    assert "timestamp" in row


def test_data_for_long_range_returns_daily_rows(api_client: TestClient) -> None:
    response = api_client.get(
        "/api/data",
        params={"start": "2024-06-01T00:00:00Z", "end": "2024-06-09T00:00:00Z"},
    )

    assert response.status_code == 200
    [row] = response.json()
    assert "date" in row
    assert "timestamp" not in row


def test_data_without_end_is_bad_request_and_skips_store(
    store: DataStore, api_client: TestClient
) -> None:
    store.state.mark_down()

    response = api_client.get("/api/data", params={"start": "2024-06-01T00:00:00Z"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Both start and end parameters are required"


def test_data_with_unparsable_date_is_bad_request(api_client: TestClient) -> None:
    response = api_client.get("/api/data", params={"start": "soon", "end": "later"})

    assert response.status_code == 400
    assert "Invalid date format" in response.json()["detail"]


def test_store_failure_is_server_error(store: DataStore, api_client: TestClient) -> None:
    store.state.mark_down()

    response = api_client.get(
        "/api/data",
        params={"start": "2024-06-01T00:00:00Z", "end": "2024-06-01T01:00:00Z"},
    )

    assert response.status_code == 500
    assert response.json() == {"detail": "Server error"}


def test_stats_store_failure_is_server_error(store: DataStore, api_client: TestClient) -> None:
    store.state.mark_down()

    response = api_client.get(
        "/api/data/stats",
        params={"start": "2024-06-01T00:00:00Z", "end": "2024-06-03T00:00:00Z"},
    )

    assert response.status_code == 500
    assert response.json() == {"detail": "Server error"}


def test_latest_store_failure_is_server_error(store: DataStore, api_client: TestClient) -> None:
    store.state.mark_down()

    response = api_client.get("/api/data/latest")

    assert response.status_code == 500
    assert response.json() == {"detail": "Server error"}


def test_latest_returns_most_recent_reading(api_client: TestClient) -> None:
    response = api_client.get("/api/data/latest")

    assert response.status_code == 200
    assert response.json()["temperature"] == 24.0


def test_latest_returns_null_when_empty(monkeypatch) -> None:
    empty = _cached(ResolutionRouter(build_store(None, raw_max_documents=10, raw_max_bytes=10_000)))
    monkeypatch.setattr("app.api.build_default_router", empty)
    monkeypatch.setenv("INGEST_ENABLED", "false")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    get_settings.cache_clear()
    monkeypatch.setattr("app.main.build_default_router", empty)

    with TestClient(create_app()) as client:
        response = client.get("/api/data/latest")

    get_settings.cache_clear()
    assert response.status_code == 200
    assert response.json() is None


def test_stats_returns_summary(api_client: TestClient) -> None:
    response = api_client.get(
        "/api/data/stats",
        params={"start": "2024-06-01T00:00:00Z", "end": "2024-06-01T02:00:00Z"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "avgTemp": 22.0,
        "minTemp": 20.0,
        "maxTemp": 24.0,
        "avgHumidity": 50.0,
        "minHumidity": 50.0,
        "maxHumidity": 50.0,
        "count": 3,
    }


def test_stats_with_no_matches_is_empty_object(api_client: TestClient) -> None:
    response = api_client.get(
        "/api/data/stats",
        params={"start": "2030-01-01T00:00:00Z", "end": "2030-01-01T01:00:00Z"},
    )

    assert response.status_code == 200
    assert response.json() == {}


def test_stats_without_start_is_bad_request(api_client: TestClient) -> None:
    response = api_client.get("/api/data/stats", params={"end": "2024-06-01T00:00:00Z"})

    assert response.status_code == 400


def test_health_reports_store_state(store: DataStore, api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {
        "status": "ok",
        "store": "up",
        "mqtt": "disabled",
    }

    store.state.mark_down()

    assert api_client.get("/health").json() == {
        "status": "ok",
        "store": "down",
        "mqtt": "disabled",
    }


def test_lifespan_starts_and_cancels_background_tasks(store: DataStore, monkeypatch) -> None:
    started: list[str] = []

    async def fake_listener_run(self, source) -> None:
        started.append(type(source).__name__)

    async def fake_scheduler_run(self) -> None:
        started.append("scheduler")

    monkeypatch.setenv("INGEST_ENABLED", "true")
    monkeypatch.setenv("SCHEDULER_ENABLED", "true")
    get_settings.cache_clear()
    monkeypatch.setattr("services.ingestion.IngestionListener.run", fake_listener_run)
    monkeypatch.setattr("services.scheduler.RollupScheduler.run", fake_scheduler_run)
    build_test_router = _cached(ResolutionRouter(store))
    monkeypatch.setattr("app.main.build_default_router", build_test_router)
    monkeypatch.setattr("app.api.build_default_router", build_test_router)

    with TestClient(create_app()) as client:
        assert client.get("/health").json()["mqtt"] == "down"

    get_settings.cache_clear()
    assert sorted(started) == ["MqttTransport", "scheduler"]
