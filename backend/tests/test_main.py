from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from codstats.ingestion import IngestionOrchestrator
from codstats.main import DashboardService, app, build_service, get_service
from codstats.persistence import MatchCache, MemoryStore
from codstats.query import QueryState
from codstats.settings import Settings
from codstats.sources import CsvMatchSource, MatchApiClient

CSV_TEXT = """UTC Timestamp,Game Type,Map,Match Outcome,Skill,Score,Kills,Deaths,Assists,Total XP
2024-11-02 18:05,Hardpoint,Vault,win,1420,6850,31,22,6,10450
2024-11-02 18:17,Search and Destroy,Rewind,loss,1385,2310,8,7,2,6320
2024-11-02 18:31,Control,Protocol,win,1440,4980,24,19,5,9120
2024-11-02 18:46,Hardpoint,Skyline,loss,1402,5420,22,27,4,8870
2024-11-02 19:02,Team Deathmatch,Hacienda,win,1418,3890,40,1,3,7640
2024-11-02 19:15,Team Deathmatch,Vault,,1490,3120,0,0,0,0
"""


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = ""

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    def __init__(self) -> None:
        self.get_calls = 0
        self.upload_response = FakeResponse(400, {"detail": "Missing required column: Kills"})

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.get_calls += 1
        return FakeResponse(503)

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self.upload_response


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(tmp_path, session):
    csv_path = tmp_path / "cod_stats.csv"
    csv_path.write_text(CSV_TEXT, encoding="utf-8")
    orchestrator = IngestionOrchestrator(
        api_client=MatchApiClient("http://stats.local", session=session),
        csv_source=CsvMatchSource(csv_path),
        cache=MatchCache(MemoryStore()),
    )
    service = DashboardService(orchestrator)
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def empty_client(tmp_path):
    orchestrator = IngestionOrchestrator(
        api_client=None,
        csv_source=CsvMatchSource(tmp_path / "missing.csv"),
        cache=MatchCache(MemoryStore()),
    )
    service = DashboardService(orchestrator)
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_dashboard_falls_back_to_csv(client, session) -> None:
    response = client.get("/api/dashboard")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["source"] == "csv"
    assert payload["matches_analyzed"] == 5
    assert payload["summary"]["wins"] == 3

    client.get("/api/dashboard", params={"gamemode": "ranked"})
    assert session.get_calls == 1


def test_health_reports_ingestion_state(client) -> None:
    client.get("/api/controls")
    payload = client.get("/api/health").json()
    assert payload["status"] == "healthy"
    assert payload["ingestion"]["state"] == "ready"
    assert payload["ingestion"]["use_api"] is False


def test_controls_and_view(client) -> None:
    controls = client.get("/api/controls").json()
    assert [option["value"] for option in controls["gamemodes"]][:2] == ["all", "ranked"]

    view = client.get("/api/view", params={"gamemode": "ranked", "metric": "K/D Ratio"}).json()
    assert view["count"] == 4
    assert {row["game_type"] for row in view["matches"]} == {
        "Hardpoint",
        "Search and Destroy",
        "Control",
    }

    outliers = client.get("/api/view", params={"metric": "K/D Ratio"}).json()
    assert outliers["count"] == 4


def test_invalid_metric_is_rejected(client) -> None:
    assert client.get("/api/dashboard", params={"metric": "Vibes"}).status_code == 422


def test_chart_endpoint(client) -> None:
    response = client.get("/api/analytics/donut", params={"donut_filter": "ranked"})
    assert response.status_code == 200
    assert response.json()["data"]["wins"] == 2

    assert client.get("/api/analytics/radar").status_code == 404
    assert client.get("/api/analytics/bar", params={"bar_metric": "Vibes"}).status_code == 422


def test_match_table_and_export(client) -> None:
    page = client.get("/api/matches/table", params={"per_page": 2, "page": 2}).json()
    assert page["total_rows"] == 5
    assert page["total_pages"] == 3
    assert len(page["rows"]) == 2

    export = client.get("/api/matches/export", params={"map": "Vault"})
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert export.text.splitlines()[1].startswith("2024-11-02 18:05,Hardpoint,Vault,Win")
    assert client.get("/api/matches/export", params={"map": "Nuketown"}).status_code == 404


def test_upload_error_maps_to_400(client) -> None:
    response = client.post(
        "/api/upload", files={"file": ("export.csv", b"a,b\n1,2\n", "text/csv")}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing required column: Kills"


def test_upload_success_invalidates_views(client, session) -> None:
    assert client.get("/api/view").json()["count"] == 5
    session.upload_response = FakeResponse(
        200,
        {
            "status": "success",
            "message": "ok",
            "data": [
                {"utc_timestamp": "2024-11-04T20:00:00Z", "game_type": "Hardpoint", "map": "Vault", "skill": 1500},
            ],
        },
    )
    result = client.post("/api/upload", files={"file": ("export.csv", b"x", "text/csv")}).json()
    assert result["kept"] == 1
    assert client.get("/api/view").json()["count"] == 1


def test_empty_state_payload(empty_client) -> None:
    payload = empty_client.get("/api/dashboard").json()
    assert payload["status"] == "empty"
    assert "Upload" in payload["message"]
    assert empty_client.get("/api/matches/export").json()["status"] == "empty"


def test_cache_clear_reloads(client) -> None:
    client.get("/api/dashboard")
    payload = client.post("/api/cache/clear").json()
    assert payload["status"] == "cleared"
    assert payload["ingestion"]["source"] == "csv"
    assert payload["ingestion"]["match_count"] == 5


def test_service_caches_views_per_query(client) -> None:
    service = app.dependency_overrides[get_service]()
    first = service.view(QueryState())
    assert service.view(QueryState()) is first


def test_view_of_superseded_dataset_is_not_cached(client, session, monkeypatch) -> None:
    service = app.dependency_overrides[get_service]()
    orchestrator = service.orchestrator
    stale = orchestrator.dataset()
    assert len(stale) == 5

    def publish_during_read():
        session.upload_response = FakeResponse(
            200,
            {"status": "success", "data": [{"utc_timestamp": "2024-11-04T20:00:00Z", "map": "Vault"}]},
        )
        orchestrator.ingest_upload("export.csv", b"x")
        return stale

    monkeypatch.setattr(orchestrator, "dataset", publish_during_read)
    assert len(service.view(QueryState())) == 5
    monkeypatch.undo()

    assert len(service.view(QueryState())) == 1


def test_unset_api_base_url_means_csv_only(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("CODSTATS_API_BASE_URL", raising=False)
    monkeypatch.setenv("CODSTATS_USE_API", "true")
    monkeypatch.setenv("CODSTATS_CSV_PATH", str(tmp_path / "cod_stats.csv"))
    monkeypatch.setenv("CODSTATS_CACHE_DIR", str(tmp_path / "cache"))
    config = Settings.from_env()
    assert config.api_base_url is None
    assert config.use_api is True

    service = build_service(config)
    assert service.orchestrator.api_client is None
    assert service.orchestrator.use_api is False


def test_upload_without_api_is_unavailable(empty_client) -> None:
    response = empty_client.post(
        "/api/upload", files={"file": ("export.csv", b"a,b\n1,2\n", "text/csv")}
    )
    assert response.status_code == 503
    assert "CODSTATS_API_BASE_URL" in response.json()["detail"]
