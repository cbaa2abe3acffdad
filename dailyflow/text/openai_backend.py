import os
from pathlib import Path
from typing import Optional

import requests
from loguru import logger

from dailyflow.config import load_config
from dailyflow.text.base import ITextBackend, TextServiceError, TextServiceUnavailable, post_once
from dailyflow.text.prompts import STRUCTURE_SYSTEM_PROMPT, SUMMARY_SYSTEM_PROMPT, summary_user_prompt


class OpenAITextBackend(ITextBackend):
    name = "openai"

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._config = load_config()
        # A key saved on the user's profile wins over the environment
        self._api_key = api_key or self._config.openai_api_key
        self._chat_url = self._config.llm_api_url
        self._transcribe_url = self._config.whisper_api_url
        self._model = os.environ.get("OPENAI_STRUCTURE_MODEL", "gpt-4o-mini")
        self._transcribe_model = os.environ.get("OPENAI_TRANSCRIBE_MODEL", "whisper-1")

        if not self._api_key:
            logger.warning("OPENAI_API_KEY not found; OpenAI text service unavailable.")

    def _headers(self) -> dict:
        if not self._api_key:
            raise TextServiceUnavailable("No API key; OpenAI text service disabled.")
        return {"Authorization": f"Bearer {self._api_key}"}

    def _chat(self, label: str, system: str, user: str, max_tokens: int, temperature: float) -> str:
        headers = {**self._headers(), "Content-Type": "application/json"}
        data = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        resp = post_once(
            label, lambda: requests.post(self._chat_url, headers=headers, json=data, timeout=(15, 120))
        )
        try:
            content = resp.json()["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise TextServiceError(f"Unexpected {label} response: {e}") from e
        return content.strip()

    def structure_text(self, raw: str) -> str:
        if not raw.strip():
            return ""
        structured = self._chat("OpenAI structure", STRUCTURE_SYSTEM_PROMPT, raw, max_tokens=600, temperature=0.3)
        logger.info(f"OpenAI structured {len(raw)} chars → {len(structured)} chars")
        return structured

    def summarize_project(self, project_name: str, context: str, instructions: str) -> str:
        return self._chat(
            "OpenAI summary",
            SUMMARY_SYSTEM_PROMPT,
            summary_user_prompt(project_name, context, instructions),
            max_tokens=800,
            temperature=0.4,
        )

    def transcribe_audio(self, audio_path: str, language: str = "en") -> str:
        headers = self._headers()
        audio_file = Path(audio_path)
        if not audio_file.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_file}")
        logger.info(
            f"Transcription request: file={audio_file.name} size={audio_file.stat().st_size} bytes "
            f"model={self._transcribe_model}"
        )

        def send() -> requests.Response:
            with audio_file.open("rb") as f:
                files = {"file": (audio_file.name, f, "audio/wav")}
                data = {"model": self._transcribe_model, "response_format": "text", "language": language}
                return requests.post(self._transcribe_url, headers=headers, files=files, data=data, timeout=(15, 120))

        resp = post_once("OpenAI transcription", send)
        return resp.text.strip()
