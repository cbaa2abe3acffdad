"""Deliverable lifecycle controller.

Owns the in-memory projects and deliverables for the signed-in user and is the
only place that writes them. Every write is followed by a full refresh from
the data store (fetch and replace), reconciled by identity.

Lifecycle: Draft (composed, not persisted) -> Pending -> Done, with Reopen
taking Done back to Pending. Completion always writes a Report first.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from loguru import logger

from dailyflow.board import PlacementProposal
from dailyflow.models import (
    DEFAULT_COLOR,
    Deliverable,
    DeliverableState,
    Profile,
    Project,
    Report,
    Session,
    date_str,
)
from dailyflow.store import IDataStore, NotAuthenticated, StoreError, require_session
from dailyflow.store.base import SIGNED_OUT
from dailyflow.text import SummaryTask, TextService, TextServiceError, TextServiceUnavailable


Notifier = Callable[[str, str], None]  # (level, message); level is "success", "info" or "error"


class ReportRequired(ValueError):
    """Raised when completing a deliverable without a completion report."""
    pass


class OperationInProgress(Exception):
    """Raised when the same control submits again before its first call resolved."""
    pass


def _log_notify(level: str, message: str) -> None:
    if level == "error":
        logger.error(message)
    else:
        logger.info(message)


@dataclass
class DeliverableDraft:
    project: Project
    target_date: date
    raw_text: str = ""
    title: Optional[str] = None
    notes: Optional[str] = None
    tag: Optional[str] = None
    color_override: Optional[str] = None
    applied_preview: Optional[str] = None

    @property
    def state(self) -> DeliverableState:
        return DeliverableState.DRAFT


_EDITABLE = ("raw_text", "notes", "title", "tag", "color_override")


@dataclass
class EditSession:
    """Working copy of a persisted deliverable; only changed fields are written on close."""
    original: Deliverable
    raw_text: str
    notes: Optional[str] = None
    title: Optional[str] = None
    tag: Optional[str] = None
    color_override: Optional[str] = None
    applied_preview: Optional[str] = None

    @property
    def deliverable_id(self) -> str:
        return self.original.id

    def changes(self) -> Dict[str, object]:
        changes: Dict[str, object] = {}
        for name in _EDITABLE:
            new = getattr(self, name)
            if name != "raw_text":
                new = new or None
            if new != getattr(self.original, name):
                changes[name] = new
        if self.applied_preview:
            # An applied preview always wins, even when it matches what is stored
            if self.applied_preview != self.original.structured_text:
                changes["structured_text"] = self.applied_preview
        elif "raw_text" in changes:
            # No preview applied: structured text tracks the raw text verbatim
            changes["structured_text"] = self.raw_text
        return changes


@dataclass
class Reconciliation:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


@dataclass
class HistoryEntry:
    deliverable: Deliverable
    reports: List[Report]


def reconcile(old: Sequence, new: Sequence) -> Reconciliation:
    old_by_id = {x.id: x for x in old}
    new_by_id = {x.id: x for x in new}
    return Reconciliation(
        added=[i for i in new_by_id if i not in old_by_id],
        removed=[i for i in old_by_id if i not in new_by_id],
        changed=[i for i in new_by_id if i in old_by_id and old_by_id[i] != new_by_id[i]],
    )


class DeliverableController:
    def __init__(
        self,
        store: IDataStore,
        text_service: TextService,
        notify: Optional[Notifier] = None,
        on_signed_out: Optional[Callable[[], None]] = None,
    ) -> None:
        self.store = store
        self.text_service = text_service
        self.notify: Notifier = notify or _log_notify
        self.on_signed_out = on_signed_out

        self.projects: List[Project] = []
        self.deliverables: List[Deliverable] = []

        self._in_flight: set = set()
        self._in_flight_lock = threading.Lock()
        self._unsubscribe = store.on_auth_state_change(self._on_auth_change)

    def close(self) -> None:
        self._unsubscribe()

    def _on_auth_change(self, event: str, session: Optional[Session]) -> None:
        if event == SIGNED_OUT or session is None:
            self.projects = []
            self.deliverables = []
            if self.on_signed_out is not None:
                self.on_signed_out()

    @contextmanager
    def _guard(self, key: str) -> Iterator[None]:
        with self._in_flight_lock:
            if key in self._in_flight:
                raise OperationInProgress(f"Already in progress: {key}")
            self._in_flight.add(key)
        try:
            yield
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(key)

    def _fail(self, message: str, error: Exception) -> None:
        logger.error(f"{message}: {error}")
        self.notify("error", message)

    def _find(self, deliverable_id: str) -> Deliverable:
        found = next((d for d in self.deliverables if d.id == deliverable_id), None)
        if found is None:
            raise ValueError(f"Unknown deliverable: {deliverable_id}")
        return found

    def project(self, project_id: str) -> Optional[Project]:
        return next((p for p in self.projects if p.id == project_id), None)

    def deliverables_for(self, project_id: str) -> List[Deliverable]:
        return [d for d in self.deliverables if d.project_id == project_id]

    # --- Collections ---
    def refresh(self, session: Optional[Session]) -> Optional[Reconciliation]:
        """Reload projects and deliverables and replace the in-memory collections."""
        session = require_session(session)
        try:
            projects = self.store.list_projects(session)
            deliverables = self.store.list_deliverables(session)
        except NotAuthenticated:
            raise
        except StoreError as e:
            self._fail("Failed to load deliverables", e)
            return None

        result = reconcile(self.deliverables, deliverables)
        self.projects = projects
        self.deliverables = deliverables
        logger.info(
            f"Refreshed {len(projects)} projects, {len(deliverables)} deliverables "
            f"(+{len(result.added)} -{len(result.removed)} ~{len(result.changed)})"
        )
        return result

    # --- Projects ---
    def create_project(self, session: Optional[Session], name: str, description: Optional[str] = None,
                       color: str = DEFAULT_COLOR) -> Optional[Project]:
        session = require_session(session)
        name = name.strip()
        if not name:
            raise ValueError("Project name cannot be empty")
        try:
            project = self.store.insert_project(
                session,
                Project(id="", user_id=session.user_id, name=name,
                        description=(description or "").strip() or None, color=color or DEFAULT_COLOR),
            )
        except NotAuthenticated:
            raise
        except StoreError as e:
            self._fail("Failed to create project", e)
            return None
        logger.info(f"Created project {project.name} ({project.id})")
        self.notify("success", "Project created successfully!")
        self.refresh(session)
        return project

    # --- Create ---
    def open_draft(self, proposal: PlacementProposal) -> DeliverableDraft:
        project = self.project(proposal.project_id)
        if project is None:
            raise ValueError(f"Unknown project: {proposal.project_id}")
        return DeliverableDraft(project=project, target_date=proposal.target_date, color_override=project.color)

    def save_draft(self, session: Optional[Session], draft: DeliverableDraft) -> Optional[Deliverable]:
        session = require_session(session)
        if not draft.raw_text.strip():
            raise ValueError("Deliverable text cannot be empty")

        key = f"create:{draft.project.id}:{date_str(draft.target_date)}"
        with self._guard(key):
            deliverable = Deliverable(
                id="",
                project_id=draft.project.id,
                date=date_str(draft.target_date),
                raw_text=draft.raw_text,
                structured_text=draft.applied_preview or draft.raw_text,
                title=(draft.title or "").strip() or None,
                notes=draft.notes or None,
                tag=(draft.tag or "").strip() or None,
                color_override=draft.color_override or None,
                is_done=False,
            )
            try:
                saved = self.store.insert_deliverable(session, deliverable)
            except NotAuthenticated:
                raise
            except StoreError as e:
                self._fail("Failed to save deliverable", e)
                return None

        logger.info(f"Created deliverable {saved.id} for {draft.project.name} on {saved.date}")
        self.notify("success", "Deliverable created!")
        self.refresh(session)
        return saved

    # --- Edit ---
    def begin_edit(self, deliverable_id: str) -> EditSession:
        original = replace(self._find(deliverable_id))
        return EditSession(
            original=original,
            raw_text=original.raw_text,
            notes=original.notes,
            title=original.title,
            tag=original.tag,
            color_override=original.color_override,
        )

    def close_edit(self, session: Optional[Session], edit: EditSession) -> Optional[Deliverable]:
        """Persist whatever changed since begin_edit. Unchanged edits issue no write."""
        session = require_session(session)
        changes = edit.changes()
        if not changes:
            logger.debug(f"No changes for deliverable {edit.deliverable_id}")
            return edit.original
        if "raw_text" in changes and not edit.raw_text.strip():
            raise ValueError("Deliverable text cannot be empty")

        with self._guard(f"edit:{edit.deliverable_id}"):
            try:
                updated = self.store.update_deliverable(session, edit.deliverable_id, changes)
            except NotAuthenticated:
                raise
            except StoreError as e:
                self._fail("Failed to save deliverable", e)
                return None

        logger.info(f"Updated deliverable {updated.id}: {sorted(changes)}")
        self.notify("success", "Deliverable updated!")
        self.refresh(session)
        return updated

    # --- Reports & completion ---
    def _structure_report(self, report_text: str, applied_preview: Optional[str]) -> str:
        if applied_preview:
            return applied_preview
        try:
            structured = self.text_service.structure_text(report_text)
        except (TextServiceUnavailable, TextServiceError) as e:
            logger.warning(f"Report structuring failed; keeping raw text: {e}")
            return report_text
        return structured or report_text

    def complete(self, session: Optional[Session], deliverable_id: str, report_text: str,
                 applied_preview: Optional[str] = None) -> bool:
        """Write the completion report, then flip the deliverable to done.

        The two writes are not transactional: if the flag update fails the
        report stays behind and the deliverable remains pending.
        """
        session = require_session(session)
        if not report_text or not report_text.strip():
            raise ReportRequired("Completion report required")
        deliverable = self._find(deliverable_id)
        if deliverable.is_done:
            raise ValueError(f"Deliverable already complete: {deliverable_id}")

        with self._guard(f"complete:{deliverable_id}"):
            structured = self._structure_report(report_text, applied_preview)
            try:
                report = self.store.insert_report(
                    session,
                    Report(id="", deliverable_id=deliverable_id, raw_text=report_text, structured_text=structured),
                )
            except NotAuthenticated:
                raise
            except StoreError as e:
                self._fail("Failed to complete", e)
                return False

            try:
                self.store.update_deliverable(session, deliverable_id, {"is_done": True})
            except StoreError as e:
                logger.error(f"Report {report.id} written but deliverable {deliverable_id} still pending")
                self._fail("Failed to complete", e)
                if isinstance(e, NotAuthenticated):
                    raise
                return False

        logger.info(f"Completed deliverable {deliverable_id} with report {report.id}")
        self.notify("success", "Marked complete")
        self.refresh(session)
        return True

    def add_report(self, session: Optional[Session], deliverable_id: str, report_text: str,
                   applied_preview: Optional[str] = None) -> Optional[Report]:
        session = require_session(session)
        if not report_text or not report_text.strip():
            raise ReportRequired("Report text cannot be empty")
        self._find(deliverable_id)

        with self._guard(f"report:{deliverable_id}"):
            structured = self._structure_report(report_text, applied_preview)
            try:
                report = self.store.insert_report(
                    session,
                    Report(id="", deliverable_id=deliverable_id, raw_text=report_text, structured_text=structured),
                )
            except NotAuthenticated:
                raise
            except StoreError as e:
                self._fail("Failed to add report", e)
                return None

        self.notify("success", "Report added!")
        return report

    def reopen(self, session: Optional[Session], deliverable_id: str) -> bool:
        session = require_session(session)
        self._find(deliverable_id)
        with self._guard(f"complete:{deliverable_id}"):
            try:
                self.store.update_deliverable(session, deliverable_id, {"is_done": False})
            except NotAuthenticated:
                raise
            except StoreError as e:
                self._fail("Update failed", e)
                return False
        self.notify("success", "Reopened")
        self.refresh(session)
        return True

    def toggle_done(self, session: Optional[Session], deliverable_id: str) -> bool:
        """Compact-view shortcut: reopens done items, refuses to complete without a report."""
        deliverable = self._find(deliverable_id)
        if deliverable.is_done:
            return self.reopen(session, deliverable_id)
        raise ReportRequired("Completion report required")

    def reports_for(self, session: Optional[Session], deliverable_id: str) -> List[Report]:
        session = require_session(session)
        try:
            return self.store.list_reports(session, [deliverable_id])
        except NotAuthenticated:
            raise
        except StoreError as e:
            self._fail("Failed to load reports", e)
            return []

    # --- History & summaries ---
    def project_history(self, session: Optional[Session], project_id: str) -> List[HistoryEntry]:
        """Deliverables of one project, most recent date first, each with its reports."""
        session = require_session(session)
        try:
            deliverables = self.store.list_deliverables(session, project_id)
            reports = self.store.list_reports(session, [d.id for d in deliverables])
        except NotAuthenticated:
            raise
        except StoreError as e:
            self._fail("Failed to load project history", e)
            return []

        deliverables.sort(key=lambda d: (d.date, d.created_at), reverse=True)
        grouped: Dict[str, List[Report]] = {}
        for report in reports:
            grouped.setdefault(report.deliverable_id, []).append(report)
        return [HistoryEntry(deliverable=d, reports=grouped.get(d.id, [])) for d in deliverables]

    def catch_up_summary(self, session: Optional[Session], project_id: str) -> Optional[str]:
        session = require_session(session)
        project = self.project(project_id)
        if project is None:
            raise ValueError(f"Unknown project: {project_id}")
        history = self.project_history(session, project_id)
        if not history:
            self.notify("info", "No deliverables yet for this project")
            return None

        tasks = [
            SummaryTask(
                task_title=f"{entry.deliverable.date} {entry.deliverable.display_title}",
                deliverables=entry.deliverable.structured_text or entry.deliverable.raw_text,
                reports="\n".join(r.structured_text or r.raw_text for r in entry.reports),
            )
            for entry in history
        ]
        with self._guard(f"summary:{project_id}"):
            try:
                return self.text_service.summarize_project(project.name, tasks)
            except (TextServiceUnavailable, TextServiceError) as e:
                self._fail("Failed to generate summary", e)
                return None

    # --- Profile ---
    def load_profile(self, session: Optional[Session]) -> Optional[Profile]:
        session = require_session(session)
        try:
            return self.store.get_profile(session)
        except NotAuthenticated:
            raise
        except StoreError as e:
            logger.error(f"Error fetching profile: {e}")
            return None

    def save_api_key(self, session: Optional[Session], api_key: str) -> bool:
        session = require_session(session)
        try:
            self.store.upsert_profile(session, Profile(id=session.user_id, llm_api_key=api_key.strip() or None))
        except NotAuthenticated:
            raise
        except StoreError as e:
            self._fail("Failed to save settings", e)
            return False
        self.notify("success", "Settings saved successfully!")
        return True
