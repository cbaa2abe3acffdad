"""Backend for the hosted "invoke named action" function.

JSON actions post ``{"action": ..., "payload": ...}`` and read ``result``;
transcription posts a multipart form with an ``action`` field.
"""

from pathlib import Path
from typing import Optional

import requests
from loguru import logger

from dailyflow.config import load_config
from dailyflow.text.base import ITextBackend, TextServiceError, TextServiceUnavailable, post_once


class EdgeTextBackend(ITextBackend):
    name = "edge"

    def __init__(self, url: Optional[str] = None, access_token: Optional[str] = None) -> None:
        self._config = load_config()
        self._url = url or self._config.edge_function_url
        self._access_token = access_token
        self._anon_key = self._config.supabase_anon_key

        if not self._url:
            logger.warning("EDGE_FUNCTION_URL not set; edge text service unavailable.")

    def _headers(self) -> dict:
        if not self._url:
            raise TextServiceUnavailable("Edge function URL not configured.")
        if not self._access_token:
            raise TextServiceUnavailable("Not authenticated")
        headers = {"Authorization": f"Bearer {self._access_token}"}
        if self._anon_key:
            headers["apikey"] = self._anon_key
        return headers

    def _result(self, resp: requests.Response, label: str) -> object:
        try:
            body = resp.json()
        except ValueError as e:
            raise TextServiceError(f"Invalid JSON from {label}: {e}") from e
        if not isinstance(body, dict) or "result" not in body:
            raise TextServiceError(f"{label} returned no result: {body}")
        return body["result"]

    def call(self, action: str, payload: dict) -> object:
        headers = {**self._headers(), "Content-Type": "application/json"}
        label = f"Edge {action}"
        resp = post_once(
            label,
            lambda: requests.post(self._url, headers=headers, json={"action": action, "payload": payload}, timeout=(15, 120)),
        )
        return self._result(resp, label)

    def structure_text(self, raw: str) -> str:
        if not raw.strip():
            return ""
        result = self.call("structureText", {"text": raw})
        return str((result or {}).get("structured_text") or "").strip()

    def summarize_project(self, project_name: str, context: str, instructions: str) -> str:
        result = self.call(
            "summarizeProject",
            {"project_name": project_name, "context": context, "instructions": instructions},
        )
        return str((result or {}).get("summary") or "").strip()

    def transcribe_audio(self, audio_path: str, language: str = "en") -> str:
        headers = self._headers()
        audio_file = Path(audio_path)
        if not audio_file.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_file}")

        def send() -> requests.Response:
            with audio_file.open("rb") as f:
                files = {"file": (audio_file.name, f, "audio/wav")}
                data = {"action": "transcribeAudio", "language": language}
                return requests.post(self._url, headers=headers, files=files, data=data, timeout=(15, 120))

        resp = post_once("Edge transcribeAudio", send)
        return str(self._result(resp, "Edge transcribeAudio") or "").strip()
