"""Claude backend for text structuring and project summaries."""

import os
from typing import Optional

import requests
from loguru import logger

from dailyflow.config import load_config
from dailyflow.text.base import ITextBackend, TextServiceError, TextServiceUnavailable, post_once
from dailyflow.text.prompts import STRUCTURE_SYSTEM_PROMPT, SUMMARY_SYSTEM_PROMPT, summary_user_prompt


class ClaudeTextBackend(ITextBackend):
    name = "claude"

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._config = load_config()
        self._api_key = api_key or self._config.anthropic_api_key
        self._endpoint = "https://api.anthropic.com/v1/messages"
        self._model = os.environ.get("CLAUDE_MODEL", "claude-3-5-sonnet-20241022")

        if not self._api_key:
            logger.warning("ANTHROPIC_API_KEY not found; Claude text service unavailable.")

    def _message(self, label: str, system: str, user: str, max_tokens: int, temperature: float) -> str:
        if not self._api_key:
            raise TextServiceUnavailable("No API key; Claude text service disabled.")
        headers = {
            "x-api-key": self._api_key,
            "Content-Type": "application/json",
            "anthropic-version": "2023-06-01",
        }
        data = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        resp = post_once(
            label, lambda: requests.post(self._endpoint, headers=headers, json=data, timeout=(15, 180))
        )
        try:
            content = resp.json()["content"][0]["text"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise TextServiceError(f"Unexpected {label} response: {e}") from e
        logger.debug(f"{label} raw response: {content[:200]}...")
        return content.strip()

    def structure_text(self, raw: str) -> str:
        if not raw.strip():
            return ""
        return self._message("Claude structure", STRUCTURE_SYSTEM_PROMPT, raw, max_tokens=600, temperature=0.3)

    def summarize_project(self, project_name: str, context: str, instructions: str) -> str:
        return self._message(
            "Claude summary",
            SUMMARY_SYSTEM_PROMPT,
            summary_user_prompt(project_name, context, instructions),
            max_tokens=800,
            temperature=0.4,
        )

    def transcribe_audio(self, audio_path: str, language: str = "en") -> str:
        raise TextServiceUnavailable("Claude backend does not transcribe audio.")
