"""Base classes and interfaces for data store backends."""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from dailyflow.models import Deliverable, Profile, Project, Report, Session


AuthListener = Callable[[str, Optional[Session]], None]

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


class StoreError(Exception):
    """Raised when a persistence call fails."""
    pass


class NotAuthenticated(StoreError):
    """Raised when an operation needs a session and none (or an invalid one) was given."""
    pass


class IDataStore(ABC):
    """Interface for data store backends.

    Every data call takes the explicit Session it runs under. Backends scope
    reads and writes to that session's user.
    """

    def __init__(self) -> None:
        self._listeners: List[AuthListener] = []
        self._session: Optional[Session] = None

    # --- Authentication ---
    @abstractmethod
    def sign_up(self, email: str, password: str) -> Session:
        """Create an account and return a signed-in session."""

    @abstractmethod
    def sign_in(self, email: str, password: str) -> Session:
        """Sign in with email/password.

        Raises:
            NotAuthenticated: If the credentials are rejected
            StoreError: For other failures
        """

    @abstractmethod
    def sign_out(self) -> None:
        """Drop the current session."""

    def current_session(self) -> Optional[Session]:
        return self._session

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe to session changes. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_session(self, event: str, session: Optional[Session]) -> None:
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                logger.error(f"Auth listener failed on {event}: {e}")

    # --- Projects ---
    @abstractmethod
    def list_projects(self, session: Session) -> List[Project]:
        """Projects owned by the session user, newest first."""

    @abstractmethod
    def insert_project(self, session: Session, project: Project) -> Project:
        """Persist a new project and return the stored row."""

    # --- Deliverables ---
    @abstractmethod
    def list_deliverables(self, session: Session, project_id: Optional[str] = None) -> List[Deliverable]:
        """Deliverables (with their project joined) ordered by date ascending."""

    @abstractmethod
    def insert_deliverable(self, session: Session, deliverable: Deliverable) -> Deliverable:
        """Persist a new deliverable and return the stored row."""

    @abstractmethod
    def update_deliverable(self, session: Session, deliverable_id: str, fields: Dict[str, object]) -> Deliverable:
        """Apply a partial update to a deliverable and return the stored row."""

    # --- Reports ---
    @abstractmethod
    def list_reports(self, session: Session, deliverable_ids: Iterable[str]) -> List[Report]:
        """Reports for the given deliverables, newest first."""

    @abstractmethod
    def insert_report(self, session: Session, report: Report) -> Report:
        """Persist a new, immutable report."""

    # --- Profile ---
    @abstractmethod
    def get_profile(self, session: Session) -> Optional[Profile]:
        """The session user's profile, or None if never saved."""

    @abstractmethod
    def upsert_profile(self, session: Session, profile: Profile) -> Profile:
        """Create or replace the session user's profile."""


def require_session(session: Optional[Session]) -> Session:
    if session is None or not session.access_token:
        raise NotAuthenticated("Not authenticated")
    return session
