import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class AppConfig:
    base_dir: Path
    data_base: Path
    recordings_dir: Path
    logs_dir: Path
    store_path: Path

    # Data store
    store_backend: str  # "local" or "supabase"
    supabase_url: Optional[str]
    supabase_anon_key: Optional[str]

    # Text service
    text_backend: str  # "openai", "claude" or "edge"
    openai_api_key: Optional[str]
    anthropic_api_key: Optional[str]
    llm_api_url: str
    whisper_api_url: str
    edge_function_url: Optional[str]

    # Dictation
    dictation_max_seconds: int
    transcription_language: str

    def ensure_directories(self) -> None:
        for d in (self.data_base, self.recordings_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)


def load_config() -> AppConfig:
    # Determine base directory: if frozen (PyInstaller), use executable directory.
    if getattr(sys, "frozen", False):
        base_dir = Path(sys.executable).resolve().parent
    else:
        base_dir = Path(__file__).resolve().parents[1]

    # Load .env explicitly from base_dir
    load_dotenv(dotenv_path=base_dir / ".env")

    data_base = Path(os.environ.get("DAILYFLOW_DATA_DIR", str(base_dir / "dailyflow_data")))
    recordings_dir = data_base / "recordings"
    logs_dir = base_dir / "logs"
    store_path = data_base / "store.json"

    api_base = os.environ.get("OPENAI_API_BASE", "https://api.openai.com").rstrip("/")
    llm_api_url = os.environ.get("LLM_API_URL", f"{api_base}/v1/chat/completions")
    whisper_api_url = os.environ.get("WHISPER_API_URL", f"{api_base}/v1/audio/transcriptions")

    try:
        dictation_max_seconds = int(os.environ.get("DICTATION_MAX_SECONDS", "90"))
    except ValueError:
        dictation_max_seconds = 90

    return AppConfig(
        base_dir=base_dir,
        data_base=data_base,
        recordings_dir=recordings_dir,
        logs_dir=logs_dir,
        store_path=store_path,
        store_backend=os.environ.get("STORE_BACKEND", "local").lower(),
        supabase_url=os.environ.get("SUPABASE_URL"),
        supabase_anon_key=os.environ.get("SUPABASE_ANON_KEY"),
        text_backend=os.environ.get("TEXT_BACKEND", "openai").lower(),
        openai_api_key=os.environ.get("OPENAI_API_KEY"),
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY"),
        llm_api_url=llm_api_url,
        whisper_api_url=whisper_api_url,
        edge_function_url=os.environ.get("EDGE_FUNCTION_URL"),
        dictation_max_seconds=dictation_max_seconds,
        transcription_language=os.environ.get("TRANSCRIPTION_LANGUAGE", "en"),
    )
