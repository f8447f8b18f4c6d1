from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from codstats.analyzer import CHARTS, PerformanceAnalyzer
from codstats.ingestion import IngestionOrchestrator
from codstats.matches import DATE_FIELD, DEFAULT_METRIC, CanonicalMatch
from codstats.models import (
    Controls,
    Dashboard,
    EmptyState,
    IngestionStatus,
    MatchRow,
    MatchTablePage,
    MatchView,
    UploadResult,
)
from codstats.persistence import JsonFileStore, MatchCache
from codstats.query import (
    ALL,
    QueryState,
    available_controls,
    compute_filtered_view,
    export_csv,
    paginate,
    search_matches,
)
from codstats.settings import Settings, load_env
from codstats.sources import CsvMatchSource, MatchApiClient, MatchSourceError, UploadError

env_path = load_env()

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)
if env_path:
    logger.info(f"Loaded environment from {env_path}")

settings = Settings.from_env()
if settings.debug_mode:
    logging.getLogger().setLevel(logging.DEBUG)

app = FastAPI(title="COD Stats Dashboard API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class DashboardService:
    """Dataset owner plus a per-query view cache cleared on every publish."""

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        session_gap: timedelta = timedelta(hours=2),
        min_session_size: int = 3,
    ) -> None:
        self.orchestrator = orchestrator
        self.session_gap = session_gap
        self.min_session_size = min_session_size
        self._views: Dict[QueryState, List[CanonicalMatch]] = {}
        self._lock = threading.Lock()
        orchestrator.subscribe(self._on_publish)

    def _on_publish(self, matches: Sequence[CanonicalMatch]) -> None:
        with self._lock:
            self._views.clear()
        logger.info(f"Dataset published ({len(matches)} matches), views invalidated")

    def dataset(self) -> Sequence[CanonicalMatch]:
        return self.orchestrator.dataset()

    def view(self, query: QueryState) -> List[CanonicalMatch]:
        matches = self.dataset()
        with self._lock:
            cached = self._views.get(query)
            if cached is None:
                cached = compute_filtered_view(matches, query)
                # Only cache views of the dataset that is still published.
                if matches is self.orchestrator.matches:
                    self._views[query] = cached
            return cached

    def analyzer(self, query: QueryState) -> PerformanceAnalyzer:
        return PerformanceAnalyzer(
            self.view(query),
            metric=query.metric,
            session_gap=self.session_gap,
            min_session_size=self.min_session_size,
        )


def build_service(config: Settings) -> DashboardService:
    api_client = None
    if config.api_base_url:
        api_client = MatchApiClient(config.api_base_url, timeout=config.request_timeout)
    else:
        logger.info("CODSTATS_API_BASE_URL not set, using the bundled CSV only")
    orchestrator = IngestionOrchestrator(
        api_client=api_client,
        csv_source=CsvMatchSource(config.csv_path),
        cache=MatchCache(JsonFileStore(config.cache_dir)),
        use_api=config.use_api,
        match_limit=config.match_limit,
    )
    return DashboardService(
        orchestrator,
        session_gap=timedelta(minutes=config.session_gap_minutes),
        min_session_size=config.min_session_size,
    )


@lru_cache
def get_service() -> DashboardService:
    return build_service(settings)


def get_query(
    gamemode: str = Query(ALL, min_length=1),
    map: str = Query(ALL, min_length=1),
    metric: str = Query(DEFAULT_METRIC, min_length=1),
) -> QueryState:
    try:
        return QueryState(gamemode=gamemode, map=map, metric=metric)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


def to_payload(model) -> dict:
    if hasattr(model, "model_dump"):
        return model.model_dump()
    return model.dict()


def _empty() -> dict:
    return to_payload(EmptyState())


@app.get("/api/health")
async def health_check(service: DashboardService = Depends(get_service)) -> dict:
    status = IngestionStatus(**service.orchestrator.snapshot())
    return {"status": "healthy", "ingestion": to_payload(status)}


@app.get("/api/controls")
async def get_controls(service: DashboardService = Depends(get_service)) -> dict:
    matches = await run_in_threadpool(service.dataset)
    if not matches:
        return _empty()
    return to_payload(Controls(**available_controls(matches)))


@app.get("/api/dashboard")
async def get_dashboard(
    query: QueryState = Depends(get_query),
    service: DashboardService = Depends(get_service),
) -> dict:
    matches = await run_in_threadpool(service.dataset)
    if not matches:
        return _empty()
    analyzer = await run_in_threadpool(service.analyzer, query)
    payload = analyzer.generate_dashboard()
    dashboard = Dashboard(
        source=service.orchestrator.source,
        matches_analyzed=len(analyzer.matches),
        **payload,
    )
    return to_payload(dashboard)


@app.get("/api/view")
async def get_view(
    query: QueryState = Depends(get_query),
    service: DashboardService = Depends(get_service),
) -> dict:
    matches = await run_in_threadpool(service.dataset)
    if not matches:
        return _empty()
    view = await run_in_threadpool(service.view, query)
    return to_payload(
        MatchView(
            metric=query.metric,
            count=len(view),
            matches=[MatchRow.from_match(match) for match in view],
        )
    )


@app.get("/api/analytics/{chart}")
async def get_chart(
    chart: str,
    bar_metric: Optional[str] = Query(None),
    donut_filter: str = Query(ALL),
    query: QueryState = Depends(get_query),
    service: DashboardService = Depends(get_service),
) -> dict:
    if chart not in CHARTS:
        raise HTTPException(status_code=404, detail=f"Unknown chart: {chart}")
    matches = await run_in_threadpool(service.dataset)
    if not matches:
        return _empty()
    analyzer = await run_in_threadpool(service.analyzer, query)
    try:
        return analyzer.get_chart(chart, bar_metric=bar_metric, donut_filter=donut_filter)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@app.get("/api/matches/table")
async def get_match_table(
    search: str = Query(""),
    game_type: str = Query(""),
    map: str = Query(""),
    sort: str = Query(DATE_FIELD),
    direction: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(25, ge=1, le=200),
    service: DashboardService = Depends(get_service),
) -> dict:
    matches = await run_in_threadpool(service.dataset)
    if not matches:
        return _empty()
    try:
        rows = search_matches(matches, search, game_type, map, sort, direction == "desc")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    result = paginate(rows, page, per_page)
    result["rows"] = [MatchRow.from_match(match) for match in result["rows"]]
    return to_payload(MatchTablePage(**result))


@app.get("/api/matches/export", response_model=None)
async def export_matches(
    search: str = Query(""),
    game_type: str = Query(""),
    map: str = Query(""),
    service: DashboardService = Depends(get_service),
) -> Any:
    matches = await run_in_threadpool(service.dataset)
    if not matches:
        return _empty()
    rows = search_matches(matches, search, game_type, map)
    if not rows:
        raise HTTPException(status_code=404, detail="No data to export")
    filename = f"cod-matches-{rows[0].timestamp.date().isoformat()}.csv"
    return Response(
        content=export_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/upload")
async def upload_matches(
    file: UploadFile = File(...),
    service: DashboardService = Depends(get_service),
) -> dict:
    if service.orchestrator.api_client is None:
        raise HTTPException(
            status_code=503,
            detail="Uploads need a match API; set CODSTATS_API_BASE_URL.",
        )
    content = await file.read()
    try:
        result = await run_in_threadpool(
            service.orchestrator.ingest_upload, file.filename or "", content
        )
    except UploadError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except MatchSourceError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return to_payload(UploadResult(**result))


@app.post("/api/cache/clear")
async def clear_cache(service: DashboardService = Depends(get_service)) -> dict:
    await run_in_threadpool(service.orchestrator.clear_cache)
    status = IngestionStatus(**service.orchestrator.snapshot())
    return {"status": "cleared", "ingestion": to_payload(status)}
