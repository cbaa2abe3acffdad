import copy
import hashlib
import json
import secrets
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from loguru import logger

from dailyflow.models import Deliverable, Profile, Project, Report, Session, new_id, now_iso
from dailyflow.store.base import (
    SIGNED_IN,
    SIGNED_OUT,
    IDataStore,
    NotAuthenticated,
    StoreError,
    require_session,
)


_TABLES = ("projects", "deliverables", "reports", "profiles")
_UPDATABLE_FIELDS = {
    "raw_text", "structured_text", "title", "notes", "tag", "color_override", "is_done", "date",
}
_PBKDF2_ROUNDS = 200_000


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), _PBKDF2_ROUNDS).hex()


class LocalDataStore(IDataStore):
    """Single-file JSON store for offline use.

    Layout of the document::

        {"users": {email: {"id", "salt", "hash"}},
         "projects": [...], "deliverables": [...], "reports": [...], "profiles": [...]}
    """

    def __init__(self, store_path: Path) -> None:
        super().__init__()
        self.store_path = Path(store_path)
        self._lock = threading.RLock()
        self._tokens: Dict[str, str] = {}
        self._data: Dict[str, object] = {}
        self._load()

    def _load(self) -> None:
        empty = {"users": {}, **{t: [] for t in _TABLES}}
        if not self.store_path.exists():
            self._data = empty
            return
        try:
            data = json.loads(self.store_path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.warning(f"Failed to read store; starting fresh: {e}")
            self._data = empty
            return
        if not isinstance(data, dict):
            logger.warning(f"Store file has unexpected shape; starting fresh: {self.store_path}")
            self._data = empty
            return
        self._data = {"users": data.get("users") or {}}
        for table in _TABLES:
            rows = []
            for item in data.get(table) or []:
                if isinstance(item, dict) and item.get("id"):
                    rows.append(item)
                else:
                    logger.warning(f"Skipping malformed {table} row: {item}")
            self._data[table] = rows

    def _save(self, data: Dict[str, object]) -> None:
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.store_path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(self.store_path)
        except OSError as e:
            raise StoreError(f"Failed to write store: {e}") from e
        logger.debug(f"Saved store → {self.store_path}")

    @contextmanager
    def _transaction(self) -> Iterator[Dict[str, object]]:
        """Yield a working copy of the document.

        The copy becomes the live document only after it is on disk, so a
        failed write leaves neither memory nor file changed.
        """
        with self._lock:
            draft = copy.deepcopy(self._data)
            yield draft
            self._save(draft)
            self._data = draft

    def _rows(self, table: str) -> List[dict]:
        return self._data[table]  # type: ignore[return-value]

    def _user_id(self, session: Optional[Session]) -> str:
        session = require_session(session)
        user_id = self._tokens.get(session.access_token)
        if user_id is None or user_id != session.user_id:
            raise NotAuthenticated("Session expired or unknown")
        return user_id

    def _project_ids(self, user_id: str) -> set:
        return {p["id"] for p in self._rows("projects") if p.get("user_id") == user_id}

    def _issue_session(self, email: str, user_id: str) -> Session:
        token = secrets.token_hex(16)
        self._tokens[token] = user_id
        session = Session(user_id=user_id, email=email, access_token=token)
        logger.info(f"Signed in as {email}")
        self._set_session(SIGNED_IN, session)
        return session

    # --- Authentication ---
    def sign_up(self, email: str, password: str) -> Session:
        email = email.strip().lower()
        if not email or not password:
            raise StoreError("Email and password are required")
        with self._transaction() as doc:
            users = doc["users"]
            if email in users:
                raise StoreError(f"Account already exists: {email}")
            salt = secrets.token_hex(16)
            user = {"id": new_id(), "salt": salt, "hash": _hash_password(password, salt)}
            users[email] = user
        return self._issue_session(email, user["id"])

    def sign_in(self, email: str, password: str) -> Session:
        email = email.strip().lower()
        with self._lock:
            user = self._data["users"].get(email)
        if not user or not secrets.compare_digest(user["hash"], _hash_password(password, user["salt"])):
            raise NotAuthenticated("Invalid email or password")
        return self._issue_session(email, user["id"])

    def sign_out(self) -> None:
        session = self._session
        if session is not None:
            self._tokens.pop(session.access_token, None)
            logger.info(f"Signed out {session.email}")
        self._set_session(SIGNED_OUT, None)

    # --- Projects ---
    def list_projects(self, session: Session) -> List[Project]:
        user_id = self._user_id(session)
        with self._lock:
            rows = [Project.from_dict(p) for p in self._rows("projects") if p.get("user_id") == user_id]
        rows.sort(key=lambda p: p.created_at, reverse=True)
        return rows

    def insert_project(self, session: Session, project: Project) -> Project:
        user_id = self._user_id(session)
        stamp = now_iso()
        row = Project(
            id=project.id or new_id(),
            user_id=user_id,
            name=project.name,
            description=project.description,
            color=project.color,
            created_at=stamp,
            updated_at=stamp,
        )
        with self._transaction() as doc:
            doc["projects"].append(row.to_dict())
        return row

    # --- Deliverables ---
    def list_deliverables(self, session: Session, project_id: Optional[str] = None) -> List[Deliverable]:
        user_id = self._user_id(session)
        with self._lock:
            projects = {p["id"]: Project.from_dict(p) for p in self._rows("projects") if p.get("user_id") == user_id}
            rows = []
            for d in self._rows("deliverables"):
                if d.get("project_id") not in projects:
                    continue
                if project_id and d.get("project_id") != project_id:
                    continue
                deliverable = Deliverable.from_dict(d)
                deliverable.project = projects[deliverable.project_id]
                rows.append(deliverable)
        rows.sort(key=lambda d: (d.date, d.created_at))
        return rows

    def insert_deliverable(self, session: Session, deliverable: Deliverable) -> Deliverable:
        user_id = self._user_id(session)
        with self._transaction() as doc:
            if deliverable.project_id not in self._project_ids(user_id):
                raise StoreError(f"Unknown project: {deliverable.project_id}")
            stamp = now_iso()
            row = deliverable.to_dict()
            row.update({"id": deliverable.id or new_id(), "created_at": stamp, "updated_at": stamp})
            doc["deliverables"].append(row)
        return Deliverable.from_dict(row)

    def update_deliverable(self, session: Session, deliverable_id: str, fields: Dict[str, object]) -> Deliverable:
        user_id = self._user_id(session)
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise StoreError(f"Cannot update fields: {sorted(unknown)}")
        with self._transaction() as doc:
            owned = self._project_ids(user_id)
            row = next(
                (d for d in doc["deliverables"] if d["id"] == deliverable_id and d.get("project_id") in owned),
                None,
            )
            if row is None:
                raise StoreError(f"Deliverable not found: {deliverable_id}")
            row.update(fields)
            row["updated_at"] = now_iso()
        return Deliverable.from_dict(row)

    # --- Reports ---
    def list_reports(self, session: Session, deliverable_ids: Iterable[str]) -> List[Report]:
        user_id = self._user_id(session)
        wanted = set(deliverable_ids)
        with self._lock:
            owned = self._project_ids(user_id)
            visible = {d["id"] for d in self._rows("deliverables") if d.get("project_id") in owned}
            matched = [
                (r.get("created_at") or "", pos, Report.from_dict(r))
                for pos, r in enumerate(self._rows("reports"))
                if r.get("deliverable_id") in wanted and r.get("deliverable_id") in visible
            ]
        # Newest first; rows stamped alike keep reverse insertion order
        matched.sort(key=lambda m: (m[0], m[1]), reverse=True)
        return [m[2] for m in matched]

    def insert_report(self, session: Session, report: Report) -> Report:
        user_id = self._user_id(session)
        with self._transaction() as doc:
            owned = self._project_ids(user_id)
            if not any(d["id"] == report.deliverable_id and d.get("project_id") in owned
                       for d in self._rows("deliverables")):
                raise StoreError(f"Report references unknown deliverable: {report.deliverable_id}")
            row = Report(
                id=report.id or new_id(),
                deliverable_id=report.deliverable_id,
                raw_text=report.raw_text,
                structured_text=report.structured_text,
                created_at=now_iso(),
            )
            doc["reports"].append(row.to_dict())
        return row

    # --- Profile ---
    def get_profile(self, session: Session) -> Optional[Profile]:
        user_id = self._user_id(session)
        with self._lock:
            row = next((p for p in self._rows("profiles") if p["id"] == user_id), None)
        return Profile.from_dict(row) if row else None

    def upsert_profile(self, session: Session, profile: Profile) -> Profile:
        user_id = self._user_id(session)
        with self._transaction() as doc:
            rows = doc["profiles"]
            existing = next((p for p in rows if p["id"] == user_id), None)
            stamp = now_iso()
            if existing:
                existing["llm_api_key"] = profile.llm_api_key
                existing["updated_at"] = stamp
                row = existing
            else:
                row = Profile(id=user_id, llm_api_key=profile.llm_api_key, created_at=stamp, updated_at=stamp).to_dict()
                rows.append(row)
        return Profile.from_dict(row)
