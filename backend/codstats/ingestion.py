from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from codstats.matches import CanonicalMatch
from codstats.normalizer import (
    SOURCE_API,
    SOURCE_CSV,
    SOURCE_UPLOAD,
    filter_valid_matches,
    normalize_batch,
    sort_by_timestamp,
)
from codstats.persistence import CacheCorruptError, MatchCache
from codstats.sources import CsvMatchSource, MatchApiClient, MatchSourceError

logger = logging.getLogger(__name__)

Listener = Callable[[Tuple[CanonicalMatch, ...]], None]


class IngestionState(str, Enum):
    IDLE = "idle"
    CACHE_CHECK = "cache_check"
    FETCH_REMOTE = "fetch_remote"
    FALLBACK_FETCH = "fallback_fetch"
    READY = "ready"
    EMPTY = "empty"


TERMINAL_STATES = (IngestionState.READY, IngestionState.EMPTY)


class IngestionOrchestrator:
    """Owns the canonical match set for one session.

    Cache first, then the API, then the bundled CSV. Once the API has failed
    the session stays on the CSV strategy, including after a cache clear.
    """

    def __init__(
        self,
        api_client: Optional[MatchApiClient],
        csv_source: CsvMatchSource,
        cache: MatchCache,
        use_api: bool = True,
        match_limit: int = 10000,
    ) -> None:
        self.api_client = api_client
        self.csv_source = csv_source
        self.cache = cache
        self.use_api = use_api and api_client is not None
        self.match_limit = match_limit
        self.state = IngestionState.IDLE
        self.source: Optional[str] = None
        self._matches: Tuple[CanonicalMatch, ...] = ()
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    @property
    def matches(self) -> Tuple[CanonicalMatch, ...]:
        return self._matches

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def dataset(self) -> Tuple[CanonicalMatch, ...]:
        """Canonical matches, ingesting first if this session has not yet."""
        with self._lock:
            if self.state not in TERMINAL_STATES:
                self.load()
            return self._matches

    def load(self) -> Tuple[CanonicalMatch, ...]:
        with self._lock:
            if self.state in TERMINAL_STATES:
                return self._matches

            started = time.perf_counter()
            self.state = IngestionState.CACHE_CHECK
            cached = self._load_cached()
            if cached is not None:
                logger.info("Loaded %s matches from cache", len(cached))
                self._publish(sort_by_timestamp(cached), "cache", persist=False)
                return self._matches

            matches = self._fetch_remote()
            if matches is None:
                self._set_empty()
            else:
                self._publish(matches, self.source or SOURCE_CSV, persist=True)
            logger.info(
                "[TIMING] ingestion: %.2fs (%s matches, state=%s)",
                time.perf_counter() - started,
                len(self._matches),
                self.state.value,
            )
            return self._matches

    def clear_cache(self) -> Tuple[CanonicalMatch, ...]:
        with self._lock:
            try:
                self.cache.clear()
            except OSError as exc:
                logger.warning("Failed to clear cache: %s", exc)
            self.state = IngestionState.IDLE
            self.source = None
            self._matches = ()
            logger.info("Cache cleared, reloading")
            return self.load()

    def ingest_upload(self, filename: str, content: bytes) -> Dict[str, Any]:
        """Upload a CSV export through the API and adopt the returned matches.

        UploadError propagates so the caller can show its message.
        """
        if self.api_client is None:
            raise MatchSourceError("No match API configured for uploads.")
        result = self.api_client.upload_csv(filename, content)
        raw_records = result["data"]
        with self._lock:
            matches = self._prepare(raw_records, SOURCE_UPLOAD)
            self._publish(matches, SOURCE_UPLOAD, persist=True)
        logger.info("Processed %s uploaded matches (%s kept)", len(raw_records), len(matches))
        return {
            "status": "success",
            "message": result.get("message") or "",
            "received": len(raw_records),
            "kept": len(matches),
        }

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "source": self.source,
            "match_count": len(self._matches),
            "use_api": self.use_api,
        }

    def _load_cached(self) -> Optional[List[CanonicalMatch]]:
        try:
            return self.cache.load()
        except CacheCorruptError as exc:
            logger.warning("Failed to load from cache: %s", exc)
        except OSError as exc:
            logger.warning("Failed to read cache: %s", exc)
            return None
        try:
            self.cache.clear()
        except OSError as exc:
            logger.warning("Failed to remove corrupt cache entry: %s", exc)
        return None

    def _fetch_remote(self) -> Optional[List[CanonicalMatch]]:
        if self.use_api:
            self.state = IngestionState.FETCH_REMOTE
            try:
                raw_records = self.api_client.fetch_matches(limit=self.match_limit)
            except MatchSourceError as exc:
                logger.error("Error loading data from API: %s", exc)
                logger.info("Falling back to CSV...")
                self.use_api = False
            else:
                self.source = SOURCE_API
                return self._prepare(raw_records, SOURCE_API)

        self.state = IngestionState.FALLBACK_FETCH
        try:
            raw_rows = self.csv_source.load()
        except MatchSourceError as exc:
            logger.error("Error loading data from CSV: %s", exc)
            return None
        self.source = SOURCE_CSV
        return self._prepare(raw_rows, SOURCE_CSV)

    def _prepare(self, raw_records: Sequence[Any], source: str) -> List[CanonicalMatch]:
        normalized = normalize_batch(raw_records, source)
        valid = filter_valid_matches(normalized)
        dropped = len(normalized) - len(valid)
        if dropped:
            logger.info("Filtered %s bot games from %s records", dropped, source)
        return sort_by_timestamp(valid)

    def _publish(self, matches: List[CanonicalMatch], source: str, persist: bool) -> None:
        if persist:
            try:
                self.cache.save(matches)
            except (OSError, TypeError, ValueError) as exc:
                logger.warning("Failed to save to cache: %s", exc)
        self._matches = tuple(matches)
        self.source = source
        self.state = IngestionState.READY if self._matches else IngestionState.EMPTY
        for listener in self._listeners:
            listener(self._matches)

    def _set_empty(self) -> None:
        self._matches = ()
        self.state = IngestionState.EMPTY
        logger.warning("No match data available from any source")
        for listener in self._listeners:
            listener(self._matches)
