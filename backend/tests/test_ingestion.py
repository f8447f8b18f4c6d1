from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest
import requests

sys.path.append(str(Path(__file__).resolve().parents[1]))

from codstats.ingestion import IngestionOrchestrator, IngestionState
from codstats.persistence import CACHE_KEY, MatchCache, MemoryStore
from codstats.sources import CsvMatchSource, MatchApiClient, MatchSourceError, UploadError

CSV_TEXT = """UTC Timestamp,Game Type,Map,Match Outcome,Kills,Deaths,Assists,Total XP
2024-11-02 18:31,Control,Protocol,win,24,19,5,9120
2024-11-02 18:05,Hardpoint,Vault,loss,31,22,6,10450
2024-11-02 18:40,Team Deathmatch,Vault,,0,0,0,0
"""


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    def __init__(self, get_response: FakeResponse, post_response: Optional[FakeResponse] = None) -> None:
        self.get_response = get_response
        self.post_response = post_response
        self.get_calls: List[dict] = []
        self.post_calls: List[dict] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.get_calls.append({"url": url, **kwargs})
        return self.get_response

    def post(self, url: str, **kwargs) -> FakeResponse:
        self.post_calls.append({"url": url, **kwargs})
        return self.post_response


def _api_payload() -> dict:
    return {
        "data": [
            {
                "match_start_timestamp": "2024-11-02T19:00:00Z",
                "game_type": "Hardpoint",
                "map": "Skyline",
                "match_outcome": "win",
                "kills": 30,
                "deaths": 15,
                "kd_ratio": 2.0,
                "total_xp": 11000,
            },
            {
                "match_start_timestamp": "2024-11-02T18:00:00Z",
                "game_type": "Control",
                "map": "Vault",
                "match_outcome": "loss",
                "kills": 10,
                "deaths": 20,
                "kd_ratio": 0.5,
                "total_xp": 0,
            },
        ]
    }


def _orchestrator(tmp_path, session: FakeSession, store: Optional[MemoryStore] = None, **kwargs):
    csv_path = tmp_path / "cod_stats.csv"
    csv_path.write_text(CSV_TEXT, encoding="utf-8")
    return IngestionOrchestrator(
        api_client=MatchApiClient("http://stats.local/", session=session),
        csv_source=CsvMatchSource(csv_path),
        cache=MatchCache(store or MemoryStore()),
        **kwargs,
    )


def test_api_records_are_filtered_sorted_and_cached(tmp_path) -> None:
    session = FakeSession(FakeResponse(200, _api_payload()))
    store = MemoryStore()
    orchestrator = _orchestrator(tmp_path, session, store, match_limit=500)

    matches = orchestrator.dataset()
    assert orchestrator.state is IngestionState.READY
    assert orchestrator.source == "api"
    assert [match.map for match in matches] == ["Skyline"]
    assert session.get_calls[0]["url"] == "http://stats.local/api/matches"
    assert session.get_calls[0]["params"] == {"limit": 500}
    assert CACHE_KEY in store.slots


def test_cache_hit_skips_remote(tmp_path) -> None:
    store = MemoryStore()
    _orchestrator(tmp_path, FakeSession(FakeResponse(200, _api_payload())), store).load()

    session = FakeSession(FakeResponse(500, text="boom"))
    orchestrator = _orchestrator(tmp_path, session, store)
    matches = orchestrator.load()
    assert orchestrator.source == "cache"
    assert len(matches) == 1
    assert session.get_calls == []


def test_api_failure_falls_back_to_csv_once(tmp_path) -> None:
    session = FakeSession(FakeResponse(500, {"detail": "down"}))
    orchestrator = _orchestrator(tmp_path, session)

    matches = orchestrator.dataset()
    assert orchestrator.source == "csv"
    assert orchestrator.use_api is False
    assert [match.game_type for match in matches] == ["Hardpoint", "Control"]

    orchestrator.clear_cache()
    assert orchestrator.source == "csv"
    assert len(session.get_calls) == 1


def test_corrupt_cache_is_discarded(tmp_path) -> None:
    store = MemoryStore()
    store.set(CACHE_KEY, "not json")
    orchestrator = _orchestrator(tmp_path, FakeSession(FakeResponse(200, _api_payload())), store)

    orchestrator.load()
    assert orchestrator.source == "api"
    assert store.get(CACHE_KEY).startswith("[")


def test_all_sources_failing_is_empty(tmp_path) -> None:
    session = FakeSession(FakeResponse(502, text="bad gateway"))
    orchestrator = _orchestrator(tmp_path, session)
    orchestrator.csv_source = CsvMatchSource(tmp_path / "missing.csv")

    assert orchestrator.dataset() == ()
    assert orchestrator.state is IngestionState.EMPTY


def test_listeners_receive_published_matches(tmp_path) -> None:
    orchestrator = _orchestrator(tmp_path, FakeSession(FakeResponse(200, _api_payload())))
    received = []
    orchestrator.subscribe(received.append)
    orchestrator.load()
    assert len(received) == 1
    assert received[0] == orchestrator.matches


def test_upload_replaces_dataset(tmp_path) -> None:
    upload = FakeResponse(
        200,
        {
            "status": "success",
            "message": "Processed 2 matches",
            "data": [
                {"utc_timestamp": "2024-11-04T20:00:00Z", "game_type": "Hardpoint", "map": "Rewind"},
                {"utc_timestamp": "2024-11-04T20:20:00Z", "game_type": "Control", "total_xp": 0},
            ],
        },
    )
    session = FakeSession(FakeResponse(200, _api_payload()), upload)
    orchestrator = _orchestrator(tmp_path, session)
    orchestrator.load()

    result = orchestrator.ingest_upload("export.csv", b"a,b\n1,2\n")
    assert result == {
        "status": "success",
        "message": "Processed 2 matches",
        "received": 2,
        "kept": 1,
    }
    assert orchestrator.source == "upload"
    assert [match.map for match in orchestrator.matches] == ["Rewind"]
    assert session.post_calls[0]["url"] == "http://stats.local/api/upload"


def test_upload_errors_surface_messages(tmp_path) -> None:
    rejected = FakeResponse(400, {"detail": "Missing required column: Kills"})
    orchestrator = _orchestrator(tmp_path, FakeSession(FakeResponse(200, _api_payload()), rejected))

    with pytest.raises(UploadError, match="Invalid file type"):
        orchestrator.ingest_upload("export.txt", b"")
    with pytest.raises(UploadError, match="Missing required column"):
        orchestrator.ingest_upload("export.csv", b"a\n")

    orchestrator.api_client.session.post_response = FakeResponse(200, {"status": "success", "data": {}})
    with pytest.raises(UploadError, match="data format is invalid"):
        orchestrator.ingest_upload("export.csv", b"a\n")


def test_api_client_wraps_transport_errors() -> None:
    class BrokenSession:
        def get(self, url: str, **kwargs):
            raise requests.ConnectionError("refused")

    client = MatchApiClient("http://stats.local", session=BrokenSession())
    with pytest.raises(MatchSourceError, match="refused"):
        client.fetch_matches()
