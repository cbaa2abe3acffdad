"""Service layer package for the DailyFlow planner.

Modules cover configuration loading, logging setup, the data
store backends, the text service (structuring, summaries, transcription),
dictation capture, the scheduling board and the deliverable lifecycle
controller. The PyQt5 front end lives in ``dailyflow_app``.
"""

from dailyflow.store import (
    IDataStore,
    NotAuthenticated,
    StoreError,
    get_store,
)
from dailyflow.text import (
    ITextBackend,
    TextService,
    TextServiceError,
    TextServiceUnavailable,
    get_backend as get_text_backend,
)

__all__ = [
    "IDataStore",
    "ITextBackend",
    "NotAuthenticated",
    "StoreError",
    "TextService",
    "TextServiceError",
    "TextServiceUnavailable",
    "get_store",
    "get_text_backend",
]
