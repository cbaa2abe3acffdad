"""Hosted backend-as-a-service store reached over its REST and auth endpoints."""

import time
from typing import Dict, Iterable, List, Optional

import requests
from loguru import logger

from dailyflow.config import load_config
from dailyflow.models import Deliverable, Profile, Project, Report, Session
from dailyflow.store.base import (
    SIGNED_IN,
    SIGNED_OUT,
    IDataStore,
    NotAuthenticated,
    StoreError,
    require_session,
)


class SupabaseDataStore(IDataStore):
    def __init__(self, url: Optional[str] = None, anon_key: Optional[str] = None) -> None:
        super().__init__()
        config = load_config()
        self._url = (url or config.supabase_url or "").rstrip("/")
        self._anon_key = anon_key or config.supabase_anon_key
        if not self._url or not self._anon_key:
            logger.warning("SUPABASE_URL / SUPABASE_ANON_KEY missing; hosted store unavailable.")

    # --- HTTP helpers ---
    def _headers(self, session: Optional[Session] = None) -> dict:
        if not self._url or not self._anon_key:
            raise StoreError("Hosted store is not configured")
        token = session.access_token if session else self._anon_key
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, session: Optional[Session] = None, *,
                 params: Optional[dict] = None, json: object = None, prefer: Optional[str] = None) -> object:
        headers = self._headers(session)
        if prefer:
            headers["Prefer"] = prefer
        start = time.time()
        try:
            resp = requests.request(method, f"{self._url}{path}", headers=headers, params=params,
                                    json=json, timeout=(10, 30))
        except requests.exceptions.RequestException as e:
            logger.error(f"Store {method} {path} network error: {e}")
            raise StoreError(f"Network error: {e}") from e
        logger.info(f"Store {method} {path} HTTP {resp.status_code} in {time.time() - start:.2f}s")

        if resp.status_code in (401, 403):
            raise NotAuthenticated(f"Request rejected ({resp.status_code}): {resp.text}")
        if not 200 <= resp.status_code < 300:
            raise StoreError(f"Store request failed ({resp.status_code}): {resp.text}")
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise StoreError(f"Invalid JSON from store: {e}") from e

    def _rest(self, method: str, table: str, session: Session, **kwargs) -> List[dict]:
        data = self._request(method, f"/rest/v1/{table}", require_session(session), **kwargs)
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        return list(data)

    def _session_from(self, data: dict, email: str) -> Session:
        user = data.get("user") or {}
        return Session(
            user_id=str(user.get("id", "")),
            email=str(user.get("email") or email),
            access_token=str(data["access_token"]),
            refresh_token=data.get("refresh_token"),
        )

    # --- Authentication ---
    def sign_up(self, email: str, password: str) -> Session:
        data = self._request("POST", "/auth/v1/signup", json={"email": email, "password": password})
        if not isinstance(data, dict) or not data.get("access_token"):
            raise StoreError("Account created; confirm your email before signing in")
        session = self._session_from(data, email)
        self._set_session(SIGNED_IN, session)
        return session

    def sign_in(self, email: str, password: str) -> Session:
        try:
            data = self._request(
                "POST", "/auth/v1/token", params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        except StoreError as e:
            if "(400)" in str(e):
                raise NotAuthenticated("Invalid email or password") from e
            raise
        if not isinstance(data, dict) or not data.get("access_token"):
            raise NotAuthenticated("Sign-in returned no session")
        session = self._session_from(data, email)
        logger.info(f"Signed in as {session.email}")
        self._set_session(SIGNED_IN, session)
        return session

    def sign_out(self) -> None:
        session = self._session
        if session is not None:
            try:
                self._request("POST", "/auth/v1/logout", session)
            except StoreError as e:
                logger.warning(f"Remote sign-out failed; dropping local session anyway: {e}")
        self._set_session(SIGNED_OUT, None)

    # --- Projects ---
    def list_projects(self, session: Session) -> List[Project]:
        rows = self._rest("GET", "projects", session, params={"select": "*", "order": "created_at.desc"})
        return [Project.from_dict(r) for r in rows]

    def insert_project(self, session: Session, project: Project) -> Project:
        payload = {
            "name": project.name,
            "description": project.description,
            "color": project.color,
            "user_id": session.user_id,
        }
        rows = self._rest("POST", "projects", session, json=payload, prefer="return=representation")
        if not rows:
            raise StoreError("Project insert returned no row")
        return Project.from_dict(rows[0])

    # --- Deliverables ---
    def list_deliverables(self, session: Session, project_id: Optional[str] = None) -> List[Deliverable]:
        params = {"select": "*,project:projects(*)", "order": "date.asc"}
        if project_id:
            params["project_id"] = f"eq.{project_id}"
        rows = self._rest("GET", "deliverables", session, params=params)
        return [Deliverable.from_dict(r) for r in rows]

    def insert_deliverable(self, session: Session, deliverable: Deliverable) -> Deliverable:
        payload = deliverable.to_dict()
        for key in ("id", "created_at", "updated_at"):
            payload.pop(key, None)
        rows = self._rest("POST", "deliverables", session, json=payload, prefer="return=representation")
        if not rows:
            raise StoreError("Deliverable insert returned no row")
        return Deliverable.from_dict(rows[0])

    def update_deliverable(self, session: Session, deliverable_id: str, fields: Dict[str, object]) -> Deliverable:
        rows = self._rest(
            "PATCH", "deliverables", session,
            params={"id": f"eq.{deliverable_id}"}, json=fields, prefer="return=representation",
        )
        if not rows:
            raise StoreError(f"Deliverable not found: {deliverable_id}")
        return Deliverable.from_dict(rows[0])

    # --- Reports ---
    def list_reports(self, session: Session, deliverable_ids: Iterable[str]) -> List[Report]:
        ids = [i for i in deliverable_ids if i]
        if not ids:
            return []
        rows = self._rest(
            "GET", "reports", session,
            params={"select": "*", "deliverable_id": f"in.({','.join(ids)})", "order": "created_at.desc"},
        )
        return [Report.from_dict(r) for r in rows]

    def insert_report(self, session: Session, report: Report) -> Report:
        payload = {
            "deliverable_id": report.deliverable_id,
            "raw_text": report.raw_text,
            "structured_text": report.structured_text,
        }
        rows = self._rest("POST", "reports", session, json=payload, prefer="return=representation")
        if not rows:
            raise StoreError("Report insert returned no row")
        return Report.from_dict(rows[0])

    # --- Profile ---
    def get_profile(self, session: Session) -> Optional[Profile]:
        rows = self._rest("GET", "profiles", session, params={"select": "*", "id": f"eq.{session.user_id}"})
        return Profile.from_dict(rows[0]) if rows else None

    def upsert_profile(self, session: Session, profile: Profile) -> Profile:
        payload = {"id": session.user_id, "llm_api_key": profile.llm_api_key}
        rows = self._rest(
            "POST", "profiles", session, json=payload,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return Profile.from_dict(rows[0]) if rows else Profile(id=session.user_id, llm_api_key=profile.llm_api_key)
