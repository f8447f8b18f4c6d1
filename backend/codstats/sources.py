from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import requests

logger = logging.getLogger(__name__)


class MatchSourceError(RuntimeError):
    pass


class UploadError(MatchSourceError):
    pass


class MatchApiClient:
    """Client for the match history service (`/api/matches`, `/api/upload`)."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_matches(self, limit: int = 10000) -> List[Dict]:
        url = f"{self.base_url}/api/matches"
        try:
            response = self.session.get(
                url,
                params={"limit": limit},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise MatchSourceError(f"Match API request failed: {exc}") from exc

        if response.status_code >= 400:
            detail = _extract_error_detail(response)
            raise MatchSourceError(f"API request failed: {response.status_code} - {detail}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise MatchSourceError(f"Non-JSON response from match API: {exc}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise MatchSourceError("Match API response has no data list.")
        return data

    def upload_csv(self, filename: str, content: bytes) -> Dict[str, Any]:
        """Send a CSV export to the service and return its parsed response.

        The returned dict always has a ``data`` list; anything else is an
        UploadError carrying the message to show the user.
        """
        if not filename or not filename.lower().endswith(".csv"):
            raise UploadError("Invalid file type. Please select a CSV file")

        url = f"{self.base_url}/api/upload"
        try:
            response = self.session.post(
                url,
                files={"file": (filename, content, "text/csv")},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UploadError(f"Upload failed: {exc}") from exc

        try:
            result = response.json()
        except ValueError:
            result = {}
        if not isinstance(result, dict):
            result = {}

        if response.status_code >= 400 or result.get("status") != "success":
            message = result.get("detail") or result.get("message") or "Upload failed"
            raise UploadError(str(message))
        if not isinstance(result.get("data"), list):
            raise UploadError("Upload succeeded but data format is invalid")
        return result


class CsvMatchSource:
    """Bundled CSV export read as raw string rows."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[Dict[str, str]]:
        if not self.path.exists():
            raise MatchSourceError(f"CSV file not found: {self.path}")
        try:
            frame = pd.read_csv(
                self.path,
                dtype=str,
                keep_default_na=False,
                skipinitialspace=True,
            )
        except (OSError, ValueError) as exc:
            raise MatchSourceError(f"Unable to read CSV {self.path}: {exc}") from exc
        frame.columns = [str(column).strip() for column in frame.columns]
        logger.info("Read %s rows from %s", len(frame), self.path)
        return frame.to_dict(orient="records")


def _extract_error_detail(response: requests.Response) -> str:
    text = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        return text or "No response body"

    if isinstance(payload, dict):
        if "detail" in payload:
            return str(payload["detail"])
        if "message" in payload:
            return str(payload["message"])
        if "error" in payload:
            return str(payload["error"])
        return json.dumps(payload)

    return text or "No response body"
