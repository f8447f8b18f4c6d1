from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from codstats.matches import CanonicalMatch, match_from_dict, match_to_dict

logger = logging.getLogger(__name__)

CACHE_KEY = "codStatsData"


class CacheCorruptError(ValueError):
    pass


class JsonFileStore:
    """String-keyed slots, one file per key, under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return handle.read()

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            handle.write(value)
        tmp_path.replace(path)

    def remove(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    def _path(self, key: str) -> Path:
        return self.directory / f"{self._slugify(key)}.json"

    @staticmethod
    def _slugify(value: str) -> str:
        cleaned = "".join(ch.lower() if ch.isalnum() else "_" for ch in value.strip())
        return cleaned.strip("_")


class MemoryStore:
    def __init__(self) -> None:
        self.slots: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.slots.get(key)

    def set(self, key: str, value: str) -> None:
        self.slots[key] = value

    def remove(self, key: str) -> None:
        self.slots.pop(key, None)


class MatchCache:
    """Persists the canonical match list as JSON with ISO timestamps."""

    def __init__(self, store, key: str = CACHE_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> Optional[List[CanonicalMatch]]:
        raw = self.store.get(self.key)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            if not isinstance(payload, list):
                raise CacheCorruptError("cached payload is not a list")
            return [match_from_dict(item) for item in payload]
        except CacheCorruptError:
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise CacheCorruptError(str(exc)) from exc

    def save(self, matches: Sequence[CanonicalMatch]) -> None:
        payload = [match_to_dict(match) for match in matches]
        self.store.set(self.key, json.dumps(payload))
        logger.info("Saved %s matches to cache", len(payload))

    def clear(self) -> None:
        self.store.remove(self.key)
