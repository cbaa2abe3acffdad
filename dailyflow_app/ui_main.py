import sys
import threading
from datetime import date
from enum import Enum
from typing import Callable, Iterable, List, Optional

import markdown2
from loguru import logger
from PyQt5.QtCore import QDate, QMimeData, QObject, Qt, QTimer, pyqtSignal
from PyQt5.QtGui import QColor, QDrag, QFont, QIcon, QPixmap
from PyQt5.QtWidgets import (
    QAction,
    QApplication,
    QCheckBox,
    QComboBox,
    QDateEdit,
    QDialog,
    QFormLayout,
    QFrame,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QSplitter,
    QTextBrowser,
    QTextEdit,
    QToolBar,
    QVBoxLayout,
    QWidget,
)

from dailyflow.assistant import AssistantState, TextAssistant
from dailyflow.board import DateCell, SchedulingBoard
from dailyflow.config import load_config
from dailyflow.controller import (
    DeliverableController,
    DeliverableDraft,
    EditSession,
    OperationInProgress,
    ReportRequired,
)
from dailyflow.logging_setup import setup_logging
from dailyflow.models import PRESET_COLORS, Deliverable, Project
from dailyflow.recorder import PyAudioRecorder
from dailyflow.store import NotAuthenticated, StoreError, get_store
from dailyflow.text import TextService


PROJECT_MIME = "application/x-dailyflow-project"
COMPLETION_MAX_SECONDS = 60


class AppStatus(Enum):
    """Application status states with associated colors and messages."""
    READY = ("Ready", "#666666", False)
    LOADING = ("Loading...", "#007BFF", True)
    SAVING = ("Saving...", "#007BFF", True)
    SUMMARIZING = ("Generating summary...", "#007BFF", True)
    SAVED = ("Saved", "#28A745", False)
    ERROR = ("Error", "#DC3545", False)


class SpinningLabel(QLabel):
    """Status label that prefixes a braille spinner while busy."""

    _FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._frame = 0
        self._timer = QTimer()
        self._timer.timeout.connect(self._tick)
        self._base_text = ""

    def start_spinning(self) -> None:
        if not self._timer.isActive():
            self._timer.start(80)

    def stop_spinning(self) -> None:
        self._timer.stop()
        super().setText(self._base_text)

    def _tick(self) -> None:
        self._frame = (self._frame + 1) % len(self._FRAMES)
        super().setText(f"{self._FRAMES[self._frame]} {self._base_text}")

    def setText(self, text):
        self._base_text = text
        if not self._timer.isActive():
            super().setText(text)


class Background(QObject):
    """Runs blocking calls on worker threads and hands results back to the UI thread."""

    _invoke = pyqtSignal(object)

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._invoke.connect(self._call)

    def _call(self, fn: Callable[[], None]) -> None:
        fn()

    def post(self, fn: Callable[[], None]) -> None:
        self._invoke.emit(fn)

    def run(
        self,
        work: Callable[[], object],
        on_done: Optional[Callable[[object], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        busy: Iterable[QWidget] = (),
    ) -> None:
        # The initiating controls stay disabled until the call resolves
        busy = list(busy)
        for widget in busy:
            widget.setEnabled(False)

        def release() -> None:
            for widget in busy:
                widget.setEnabled(True)

        def worker() -> None:
            try:
                result = work()
            except Exception as e:
                logger.error(f"Background task failed: {type(e).__name__}: {e}")
                self.post(release)
                if on_error is not None:
                    self.post(lambda err=e: on_error(err))
                return
            self.post(release)
            if on_done is not None:
                self.post(lambda: on_done(result))

        threading.Thread(target=worker, daemon=True).start()


def color_icon(hex_color: str, size: int = 12) -> QIcon:
    pixmap = QPixmap(size, size)
    pixmap.fill(QColor(hex_color))
    return QIcon(pixmap)


def color_combo(selected: Optional[str] = None) -> QComboBox:
    combo = QComboBox()
    colors = list(PRESET_COLORS)
    if selected and selected not in colors:
        colors.append(selected)
    for c in colors:
        combo.addItem(color_icon(c), c, c)
    if selected:
        combo.setCurrentIndex(colors.index(selected))
    return combo


def render_markdown(text: str) -> str:
    return markdown2.markdown(text or "", extras=["fenced-code-blocks", "tables", "cuddled-lists"])


# --- Sign-in ---
class SignInDialog(QDialog):
    def __init__(self, window: "MainWindow") -> None:
        super().__init__(window)
        self.main_window = window
        self.setWindowTitle("Sign in to DailyFlow")
        self.setMinimumWidth(360)

        form = QFormLayout()
        self.email_edit = QLineEdit()
        self.email_edit.setPlaceholderText("you@example.com")
        self.password_edit = QLineEdit()
        self.password_edit.setEchoMode(QLineEdit.Password)
        form.addRow("Email:", self.email_edit)
        form.addRow("Password:", self.password_edit)

        self.error_label = QLabel("")
        self.error_label.setStyleSheet("color: #DC3545;")
        self.error_label.setWordWrap(True)

        self.sign_in_btn = QPushButton("Sign In")
        self.sign_in_btn.setDefault(True)
        self.sign_up_btn = QPushButton("Create Account")
        self.sign_in_btn.clicked.connect(lambda: self._submit(sign_up=False))
        self.sign_up_btn.clicked.connect(lambda: self._submit(sign_up=True))

        buttons = QHBoxLayout()
        buttons.addWidget(self.sign_up_btn)
        buttons.addStretch()
        buttons.addWidget(self.sign_in_btn)

        v = QVBoxLayout(self)
        v.addLayout(form)
        v.addWidget(self.error_label)
        v.addLayout(buttons)

    def _submit(self, sign_up: bool) -> None:
        email = self.email_edit.text().strip()
        password = self.password_edit.text()
        if not email or not password:
            self.error_label.setText("Email and password are required.")
            return
        store = self.main_window.store
        action = store.sign_up if sign_up else store.sign_in
        self.error_label.setText("")
        self.main_window.bg.run(
            lambda: action(email, password),
            on_done=lambda _s: self.accept(),
            on_error=lambda e: self.error_label.setText(str(e)),
            busy=[self.sign_in_btn, self.sign_up_btn],
        )


# --- Dictation / AI preview ---
class AssistantPanel(QWidget):
    """Dictate and AI Preview controls bound to one text field."""

    changed = pyqtSignal()

    def __init__(self, window: "MainWindow", text_edit: QTextEdit, max_seconds: float) -> None:
        super().__init__()
        self.main_window = window
        self.text_edit = text_edit
        self.assistant = TextAssistant(
            window.controller.text_service,
            window.recorder,
            window.config.recordings_dir,
            max_seconds=max_seconds,
            language=window.config.transcription_language,
            on_change=lambda _a: self.changed.emit(),
        )
        self._last_state = AssistantState.IDLE
        self.changed.connect(self._sync)

        self.dictate_btn = QPushButton("🎤 Dictate")
        self.dictate_btn.setToolTip(f"Record up to {int(max_seconds)} seconds; the transcript is appended")
        self.dictate_btn.clicked.connect(self._on_dictate)
        self.preview_btn = QPushButton("✨ AI Preview")
        self.preview_btn.clicked.connect(self._on_preview)
        self.applied_label = QLabel("")
        self.applied_label.setStyleSheet("color: #28A745;")

        row = QHBoxLayout()
        row.addWidget(self.dictate_btn)
        row.addWidget(self.preview_btn)
        row.addWidget(self.applied_label, 1)

        self.preview_view = QTextBrowser()
        self.preview_view.setMaximumHeight(140)
        self.apply_btn = QPushButton("Apply")
        self.apply_btn.clicked.connect(self._on_apply)
        self.dismiss_btn = QPushButton("Dismiss")
        self.dismiss_btn.clicked.connect(self._on_dismiss)
        preview_btns = QHBoxLayout()
        preview_btns.addStretch()
        preview_btns.addWidget(self.dismiss_btn)
        preview_btns.addWidget(self.apply_btn)
        self.preview_box = QWidget()
        pv = QVBoxLayout(self.preview_box)
        pv.setContentsMargins(0, 0, 0, 0)
        pv.addWidget(QLabel("AI preview (not saved until applied):"))
        pv.addWidget(self.preview_view)
        pv.addLayout(preview_btns)

        self.error_label = QLabel("")
        self.error_label.setStyleSheet("color: #DC3545;")
        self.error_label.setWordWrap(True)

        v = QVBoxLayout(self)
        v.setContentsMargins(0, 0, 0, 0)
        v.addLayout(row)
        v.addWidget(self.preview_box)
        v.addWidget(self.error_label)
        self._sync()

    @property
    def applied(self) -> Optional[str]:
        return self.assistant.applied

    def _on_dictate(self) -> None:
        if self.assistant.is_recording:
            self.main_window.bg.run(self.assistant.stop_dictation, on_error=self.main_window.handle_error)
            return
        self.assistant.set_draft(self.text_edit.toPlainText())
        self.assistant.start_dictation()

    def _on_preview(self) -> None:
        self.assistant.set_draft(self.text_edit.toPlainText())
        self.main_window.bg.run(self.assistant.request_preview, on_error=self.main_window.handle_error)

    def _on_apply(self) -> None:
        self.assistant.apply_preview()

    def _on_dismiss(self) -> None:
        self.assistant.dismiss_preview()

    def _sync(self) -> None:
        state = self.assistant.state
        if self._last_state == AssistantState.TRANSCRIBING and state == AssistantState.IDLE:
            self.text_edit.setPlainText(self.assistant.draft)
        self._last_state = state

        recording = self.assistant.is_recording
        busy = state in (AssistantState.TRANSCRIBING, AssistantState.PREVIEWING)
        self.text_edit.setReadOnly(recording or state == AssistantState.TRANSCRIBING)
        self.dictate_btn.setText("⏹ Stop" if recording else ("Transcribing..." if busy else "🎤 Dictate"))
        self.dictate_btn.setEnabled(not busy)
        self.preview_btn.setText("Structuring..." if state == AssistantState.PREVIEWING else "✨ AI Preview")
        self.preview_btn.setEnabled(not busy and not recording)

        preview = self.assistant.preview
        self.preview_box.setVisible(bool(preview))
        if preview:
            self.preview_view.setHtml(render_markdown(preview))
        self.applied_label.setText("AI structure applied ✓" if self.assistant.applied else "")
        self.error_label.setText(self.assistant.error or "")

    def close_assistant(self) -> None:
        self.assistant.close()


# --- Deliverable create / edit ---
class DeliverableDialog(QDialog):
    def __init__(self, window: "MainWindow", draft: Optional[DeliverableDraft] = None,
                 edit: Optional[EditSession] = None) -> None:
        super().__init__(window)
        if (draft is None) == (edit is None):
            raise ValueError("Pass exactly one of draft or edit")
        self.main_window = window
        self.draft = draft
        self.edit = edit

        if draft is not None:
            project_name, day = draft.project.name, draft.target_date.isoformat()
            title, raw, tag, color, notes = draft.title, draft.raw_text, draft.tag, draft.color_override, draft.notes
            self.setWindowTitle("New Deliverable")
        else:
            original = edit.original
            project_name = original.project.name if original.project else ""
            day = original.date
            title, raw, tag, color, notes = edit.title, edit.raw_text, edit.tag, edit.color_override, edit.notes
            self.setWindowTitle("Edit Deliverable")
        self.resize(560, 620)

        header = QLabel(f"<b>{project_name}</b> · {day}")
        self.title_edit = QLineEdit(title or "")
        self.title_edit.setPlaceholderText("Optional title")
        self.raw_edit = QTextEdit()
        self.raw_edit.setPlainText(raw or "")
        self.raw_edit.setPlaceholderText("What needs to get done? Type or dictate...")
        self.tag_edit = QLineEdit(tag or "")
        self.color_combo = color_combo(color)
        self.notes_edit = QTextEdit()
        self.notes_edit.setPlainText(notes or "")
        self.notes_edit.setMaximumHeight(80)

        self.assistant_panel = AssistantPanel(window, self.raw_edit, window.config.dictation_max_seconds)

        form = QFormLayout()
        form.addRow("Title:", self.title_edit)
        form.addRow("Deliverables:", self.raw_edit)
        form.addRow("", self.assistant_panel)
        form.addRow("Tag:", self.tag_edit)
        form.addRow("Color:", self.color_combo)
        form.addRow("Notes:", self.notes_edit)

        self.save_btn = QPushButton("Save")
        self.save_btn.setDefault(True)
        self.save_btn.clicked.connect(self._on_save)
        cancel_btn = QPushButton("Cancel")
        cancel_btn.clicked.connect(self.reject)
        buttons = QHBoxLayout()
        buttons.addStretch()
        buttons.addWidget(cancel_btn)
        buttons.addWidget(self.save_btn)

        v = QVBoxLayout(self)
        v.addWidget(header)
        v.addLayout(form)
        v.addLayout(buttons)

    def _on_save(self) -> None:
        raw = self.raw_edit.toPlainText()
        if not raw.strip():
            QMessageBox.warning(self, "Deliverable", "Please enter some deliverable text.")
            return
        target = self.draft if self.draft is not None else self.edit
        target.raw_text = raw
        target.title = self.title_edit.text().strip() or None
        target.tag = self.tag_edit.text().strip() or None
        target.color_override = self.color_combo.currentData()
        target.notes = self.notes_edit.toPlainText().strip() or None
        target.applied_preview = self.assistant_panel.applied

        controller, session = self.main_window.controller, self.main_window.session
        if self.draft is not None:
            work = lambda: controller.save_draft(session, self.draft)  # noqa: E731
        else:
            work = lambda: controller.close_edit(session, self.edit)  # noqa: E731
        self.main_window.set_status(AppStatus.SAVING)
        self.main_window.bg.run(work, on_done=self._saved, on_error=self.main_window.handle_error, busy=[self.save_btn])

    def _saved(self, result: Optional[Deliverable]) -> None:
        if result is None:
            # Controller already surfaced the failure; keep the dialog open
            self.main_window.set_status(AppStatus.ERROR, 5)
            return
        self.main_window.set_status(AppStatus.SAVED, 3)
        self.main_window.render_board()
        self.accept()

    def done(self, r: int) -> None:
        self.assistant_panel.close_assistant()
        super().done(r)


# --- Detail / completion ---
class DeliverableDetailDialog(QDialog):
    def __init__(self, window: "MainWindow", deliverable: Deliverable) -> None:
        super().__init__(window)
        self.main_window = window
        self.deliverable = deliverable
        self.setWindowTitle(deliverable.display_title or "Deliverable")
        self.resize(620, 680)

        project_name = deliverable.project.name if deliverable.project else ""
        state = "Done ✓" if deliverable.is_done else "Pending"
        header = QLabel(
            f"<span style='color:{deliverable.display_color}; font-size:16px;'>●</span> "
            f"<b>{deliverable.display_title}</b><br>{project_name} · {deliverable.date} · {state}"
            + (f" · #{deliverable.tag}" if deliverable.tag else "")
        )
        header.setWordWrap(True)

        body = QTextBrowser()
        html = render_markdown(deliverable.structured_text or deliverable.raw_text)
        if deliverable.notes:
            html += f"<hr><p><i>Notes:</i> {deliverable.notes}</p>"
        body.setHtml(html)

        self.reports_view = QTextBrowser()
        self.reports_view.setPlainText("Loading reports...")

        self.report_edit = QTextEdit()
        self.report_edit.setPlaceholderText("What was done? Type or dictate a report...")
        self.report_edit.setMaximumHeight(110)
        self.assistant_panel = AssistantPanel(window, self.report_edit, COMPLETION_MAX_SECONDS)

        self.complete_btn = QPushButton("Reopen" if deliverable.is_done else "Mark Complete")
        self.complete_btn.clicked.connect(self._on_complete_or_reopen)
        self.add_report_btn = QPushButton("Add Report")
        self.add_report_btn.clicked.connect(self._on_add_report)
        edit_btn = QPushButton("Edit…")
        edit_btn.clicked.connect(self._on_edit)
        close_btn = QPushButton("Close")
        close_btn.clicked.connect(self.reject)
        buttons = QHBoxLayout()
        buttons.addWidget(edit_btn)
        buttons.addStretch()
        buttons.addWidget(self.add_report_btn)
        buttons.addWidget(self.complete_btn)
        buttons.addWidget(close_btn)

        v = QVBoxLayout(self)
        v.addWidget(header)
        v.addWidget(body, 2)
        v.addWidget(QLabel("Reports:"))
        v.addWidget(self.reports_view, 1)
        v.addWidget(QLabel("New report:"))
        v.addWidget(self.report_edit)
        v.addWidget(self.assistant_panel)
        v.addLayout(buttons)

        self._load_reports()

    def _load_reports(self) -> None:
        controller, session = self.main_window.controller, self.main_window.session
        self.main_window.bg.run(
            lambda: controller.reports_for(session, self.deliverable.id),
            on_done=self._show_reports,
            on_error=self.main_window.handle_error,
        )

    def _show_reports(self, reports) -> None:
        if not reports:
            self.reports_view.setPlainText("No reports yet.")
            return
        parts = []
        for report in reports:
            parts.append(f"<p><b>{report.created_at[:16].replace('T', ' ')}</b></p>")
            parts.append(render_markdown(report.structured_text or report.raw_text))
        self.reports_view.setHtml("".join(parts))

    def _report_text(self) -> Optional[str]:
        text = self.report_edit.toPlainText()
        if not text.strip():
            QMessageBox.warning(self, "Report", "Please write a short report first.")
            return None
        return text

    def _on_complete_or_reopen(self) -> None:
        controller, session = self.main_window.controller, self.main_window.session
        deliverable_id = self.deliverable.id
        if self.deliverable.is_done:
            work = lambda: controller.reopen(session, deliverable_id)  # noqa: E731
        else:
            text = self._report_text()
            if text is None:
                return
            applied = self.assistant_panel.applied
            work = lambda: controller.complete(session, deliverable_id, text, applied)  # noqa: E731
        self.main_window.set_status(AppStatus.SAVING)
        self.main_window.bg.run(work, on_done=self._state_changed, on_error=self.main_window.handle_error,
                           busy=[self.complete_btn, self.add_report_btn])

    def _state_changed(self, ok: bool) -> None:
        if not ok:
            self.main_window.set_status(AppStatus.ERROR, 5)
            return
        self.main_window.set_status(AppStatus.SAVED, 3)
        self.main_window.render_board()
        self.accept()

    def _on_add_report(self) -> None:
        text = self._report_text()
        if text is None:
            return
        controller, session = self.main_window.controller, self.main_window.session
        applied = self.assistant_panel.applied
        self.main_window.bg.run(
            lambda: controller.add_report(session, self.deliverable.id, text, applied),
            on_done=self._report_added,
            on_error=self.main_window.handle_error,
            busy=[self.add_report_btn, self.complete_btn],
        )

    def _report_added(self, report) -> None:
        if report is None:
            return
        self.report_edit.clear()
        self.assistant_panel.assistant.reset()
        self._load_reports()

    def _on_edit(self) -> None:
        edit = self.main_window.controller.begin_edit(self.deliverable.id)
        self.reject()
        DeliverableDialog(self.main_window, edit=edit).exec_()

    def done(self, r: int) -> None:
        self.assistant_panel.close_assistant()
        super().done(r)


class DayListDialog(QDialog):
    """Every deliverable on one date, for cells that overflow."""

    def __init__(self, window: "MainWindow", cell: DateCell) -> None:
        super().__init__(window)
        self.main_window = window
        self.setWindowTitle(cell.day.strftime("%A, %b %d"))
        self.resize(420, 360)
        self.list = QListWidget()
        for d in cell.deliverables:
            item = QListWidgetItem(color_icon(d.display_color), ("✓ " if d.is_done else "") + d.display_title)
            item.setData(Qt.UserRole, d.id)
            self.list.addItem(item)
        self.list.itemDoubleClicked.connect(self._open)
        v = QVBoxLayout(self)
        v.addWidget(self.list)

    def _open(self, item: QListWidgetItem) -> None:
        self.accept()
        self.main_window.open_deliverable(item.data(Qt.UserRole))


# --- Projects ---
class CreateProjectDialog(QDialog):
    def __init__(self, window: "MainWindow") -> None:
        super().__init__(window)
        self.main_window = window
        self.setWindowTitle("New Project")
        self.name_edit = QLineEdit()
        self.description_edit = QLineEdit()
        self.color_combo = color_combo()

        form = QFormLayout()
        form.addRow("Name:", self.name_edit)
        form.addRow("Description:", self.description_edit)
        form.addRow("Color:", self.color_combo)
        self.create_btn = QPushButton("Create")
        self.create_btn.setDefault(True)
        self.create_btn.clicked.connect(self._on_create)
        v = QVBoxLayout(self)
        v.addLayout(form)
        v.addWidget(self.create_btn)

    def _on_create(self) -> None:
        name = self.name_edit.text().strip()
        if not name:
            QMessageBox.warning(self, "Project", "Project name cannot be empty.")
            return
        controller, session = self.main_window.controller, self.main_window.session
        description, color = self.description_edit.text(), self.color_combo.currentData()
        self.main_window.bg.run(
            lambda: controller.create_project(session, name, description, color),
            on_done=self._created,
            on_error=self.main_window.handle_error,
            busy=[self.create_btn],
        )

    def _created(self, project: Optional[Project]) -> None:
        if project is None:
            return
        self.main_window.render_projects()
        self.accept()


class ProjectHistoryDialog(QDialog):
    def __init__(self, window: "MainWindow", project: Project) -> None:
        super().__init__(window)
        self.main_window = window
        self.project = project
        self.setWindowTitle(f"{project.name} – History")
        self.resize(760, 620)

        self.history_view = QTextBrowser()
        self.history_view.setPlainText("Loading history...")
        self.summary_view = QTextBrowser()
        self.summary_view.setPlainText("Generate a catch-up summary of the most recent work.")

        self.summary_btn = QPushButton("Generate Catch-up")
        self.summary_btn.clicked.connect(self._on_summary)
        copy_btn = QPushButton("Copy to Clipboard")
        copy_btn.clicked.connect(lambda: QApplication.clipboard().setText(self.summary_view.toPlainText()))
        close_btn = QPushButton("Close")
        close_btn.clicked.connect(self.accept)

        splitter = QSplitter(Qt.Vertical)
        splitter.addWidget(self.history_view)
        splitter.addWidget(self.summary_view)
        splitter.setSizes([380, 220])

        btns = QHBoxLayout()
        btns.addWidget(self.summary_btn)
        btns.addWidget(copy_btn)
        btns.addStretch()
        btns.addWidget(close_btn)
        v = QVBoxLayout(self)
        v.addWidget(splitter, 1)
        v.addLayout(btns)

        controller, session = window.controller, window.session
        window.bg.run(
            lambda: controller.project_history(session, project.id),
            on_done=self._show_history,
            on_error=window.handle_error,
        )

    def _show_history(self, history) -> None:
        if not history:
            self.history_view.setPlainText("No deliverables yet for this project.")
            return
        html = [f"<h2 style='color:{self.project.color};'>{self.project.name}</h2>"]
        for entry in history:
            d = entry.deliverable
            html.append(f"<h3>{d.date} · {d.display_title}{' ✓' if d.is_done else ''}</h3>")
            html.append(render_markdown(d.structured_text or d.raw_text))
            for report in entry.reports:
                html.append(f"<p style='color:#7f8c8d; margin-left:16px;'><i>Report {report.created_at[:10]}</i></p>")
                html.append(f"<div style='margin-left:16px;'>{render_markdown(report.structured_text)}</div>")
        self.history_view.setHtml("".join(html))

    def _on_summary(self) -> None:
        controller, session = self.main_window.controller, self.main_window.session
        self.main_window.set_status(AppStatus.SUMMARIZING)
        self.summary_view.setPlainText("Generating summary...")
        self.main_window.bg.run(
            lambda: controller.catch_up_summary(session, self.project.id),
            on_done=self._show_summary,
            on_error=self.main_window.handle_error,
            busy=[self.summary_btn],
        )

    def _show_summary(self, summary: Optional[str]) -> None:
        if not summary:
            self.main_window.set_status(AppStatus.READY)
            self.summary_view.setPlainText("No summary available.")
            return
        self.summary_view.setHtml(render_markdown(summary))
        self.main_window.set_status(AppStatus.SAVED, 3)


class PickDateDialog(QDialog):
    """Date-picker path for placing a project without dragging."""

    def __init__(self, window: "MainWindow") -> None:
        super().__init__(window)
        self.setWindowTitle("Add Deliverable")
        self.project_combo = QComboBox()
        for p in window.controller.projects:
            self.project_combo.addItem(color_icon(p.color), p.name, p.id)
        self.date_edit = QDateEdit()
        self.date_edit.setCalendarPopup(True)
        today = window.board.today
        self.date_edit.setMinimumDate(QDate(today.year, today.month, today.day))
        self.date_edit.setDate(QDate(today.year, today.month, today.day))

        form = QFormLayout()
        form.addRow("Project:", self.project_combo)
        form.addRow("Date:", self.date_edit)
        ok_btn = QPushButton("Continue")
        ok_btn.setDefault(True)
        ok_btn.clicked.connect(self.accept)
        v = QVBoxLayout(self)
        v.addLayout(form)
        v.addWidget(ok_btn)

    def selection(self):
        return self.project_combo.currentData(), self.date_edit.date().toPyDate()


class SettingsDialog(QDialog):
    def __init__(self, window: "MainWindow") -> None:
        super().__init__(window)
        self.main_window = window
        self.setWindowTitle("Settings")
        self.setMinimumWidth(420)
        self.key_edit = QLineEdit()
        self.key_edit.setEchoMode(QLineEdit.Password)
        self.key_edit.setPlaceholderText("sk-...")
        hint = QLabel("Your API key is used for AI structuring, summaries and transcription.")
        hint.setWordWrap(True)

        form = QFormLayout()
        form.addRow("LLM API key:", self.key_edit)
        self.save_btn = QPushButton("Save")
        self.save_btn.clicked.connect(self._on_save)
        v = QVBoxLayout(self)
        v.addLayout(form)
        v.addWidget(hint)
        v.addWidget(self.save_btn)

        controller, session = window.controller, window.session
        window.bg.run(
            lambda: controller.load_profile(session),
            on_done=lambda p: self.key_edit.setText((p.llm_api_key or "") if p else ""),
            on_error=window.handle_error,
        )

    def _on_save(self) -> None:
        key = self.key_edit.text()
        controller, session = self.main_window.controller, self.main_window.session
        self.main_window.bg.run(
            lambda: controller.save_api_key(session, key),
            on_done=lambda ok: self._saved(ok, key),
            on_error=self.main_window.handle_error,
            busy=[self.save_btn],
        )

    def _saved(self, ok: bool, key: str) -> None:
        if ok:
            self.main_window.use_api_key(key.strip() or None)
            self.accept()


# --- Board widgets ---
class ProjectList(QListWidget):
    """Project sidebar; items drag onto date cells."""

    def __init__(self) -> None:
        super().__init__()
        self.setDragEnabled(True)
        self.setSelectionMode(QListWidget.SingleSelection)

    def set_projects(self, projects: List[Project]) -> None:
        selected = self.current_project_id()
        self.clear()
        for p in projects:
            item = QListWidgetItem(color_icon(p.color), p.name)
            item.setData(Qt.UserRole, p.id)
            item.setToolTip(p.description or "Drag onto a day to add a deliverable")
            self.addItem(item)
            if p.id == selected:
                self.setCurrentItem(item)

    def current_project_id(self) -> Optional[str]:
        item = self.currentItem()
        return item.data(Qt.UserRole) if item else None

    def startDrag(self, supported_actions) -> None:
        item = self.currentItem()
        if item is None:
            return
        mime = QMimeData()
        mime.setData(PROJECT_MIME, item.data(Qt.UserRole).encode("utf-8"))
        mime.setText(item.text())
        drag = QDrag(self)
        drag.setMimeData(mime)
        drag.setPixmap(item.icon().pixmap(16, 16))
        drag.exec_(Qt.CopyAction)


class DateCellWidget(QFrame):
    project_dropped = pyqtSignal(str, object)  # (project_id, date)
    deliverable_clicked = pyqtSignal(str)
    toggle_requested = pyqtSignal(str)
    overflow_clicked = pyqtSignal(object)  # DateCell

    def __init__(self, cell: DateCell) -> None:
        super().__init__()
        self.cell = cell
        self.setAcceptDrops(not cell.is_past)
        self.setFrameShape(QFrame.StyledPanel)
        self.setMinimumWidth(130)
        self._base_style = (
            "DateCellWidget { border: 2px solid #007BFF; border-radius: 6px; background: #F0F7FF; }"
            if cell.is_today else
            "DateCellWidget { border: 1px solid #DDDDDD; border-radius: 6px; background: %s; }"
            % ("#F5F5F5" if cell.is_past else "white")
        )
        self.setStyleSheet(self._base_style)

        v = QVBoxLayout(self)
        header = QLabel(f"{cell.weekday_label}  {cell.day.day}")
        font = QFont()
        font.setBold(True)
        header.setFont(font)
        if cell.is_past:
            header.setStyleSheet("color: #999999;")
        v.addWidget(header)

        for d in cell.inline:
            v.addWidget(self._row(d))
        if cell.overflow:
            more = QPushButton(cell.overflow_label)
            more.setFlat(True)
            more.clicked.connect(lambda: self.overflow_clicked.emit(self.cell))
            v.addWidget(more)
        v.addStretch()

    def _row(self, d: Deliverable) -> QWidget:
        row = QWidget()
        h = QHBoxLayout(row)
        h.setContentsMargins(0, 0, 0, 0)
        check = QCheckBox()
        check.setChecked(d.is_done)
        check.setToolTip("Reopen" if d.is_done else "Complete (requires a report)")
        # The checkbox only requests; the board is re-rendered from controller state
        check.clicked.connect(lambda _c, i=d.id: self.toggle_requested.emit(i))
        btn = QPushButton(d.display_title)
        btn.setFlat(True)
        btn.setStyleSheet(
            f"QPushButton {{ text-align: left; border-left: 4px solid {d.display_color}; padding-left: 4px;"
            f"{' color: #999999; text-decoration: line-through;' if d.is_done else ''} }}"
        )
        btn.clicked.connect(lambda _c, i=d.id: self.deliverable_clicked.emit(i))
        h.addWidget(check)
        h.addWidget(btn, 1)
        return row

    def dragEnterEvent(self, event) -> None:
        if event.mimeData().hasFormat(PROJECT_MIME) and not self.cell.is_past:
            self.setStyleSheet(self._base_style + " DateCellWidget { background: #E8F5E9; }")
            event.acceptProposedAction()
        else:
            event.ignore()

    def dragLeaveEvent(self, event) -> None:
        self.setStyleSheet(self._base_style)

    def dropEvent(self, event) -> None:
        self.setStyleSheet(self._base_style)
        project_id = bytes(event.mimeData().data(PROJECT_MIME)).decode("utf-8")
        event.acceptProposedAction()
        self.project_dropped.emit(project_id, self.cell.day)


class MainWindow(QMainWindow):
    # Controller callbacks can fire on worker threads; these marshal them to the UI thread
    ui_notify = pyqtSignal(str, str)
    ui_signed_out = pyqtSignal()

    def __init__(self) -> None:
        super().__init__()

        self.config = load_config()
        setup_logging(self.config.logs_dir)
        logger.info("App starting up")
        self.config.ensure_directories()

        self.bg = Background(self)
        self._signing_in = False
        self.store = get_store()
        self.recorder = PyAudioRecorder()
        self.board = SchedulingBoard()
        self.controller = DeliverableController(
            self.store,
            TextService.from_config(),
            notify=self.ui_notify.emit,
            on_signed_out=self.ui_signed_out.emit,
        )
        self.ui_notify.connect(self._on_notify)
        self.ui_signed_out.connect(self._on_signed_out)

        self.setWindowTitle("DailyFlow")
        self.setGeometry(120, 120, 1280, 720)

        # --- Toolbar ---
        self.toolbar = QToolBar("Main", self)
        self.toolbar.setMovable(False)
        self.addToolBar(self.toolbar)
        nav = [
            ("« Month", lambda: self._shift("month", "prev")),
            ("‹ Week", lambda: self._shift("week", "prev")),
            ("Today", self._go_today),
            ("Week ›", lambda: self._shift("week", "next")),
            ("Month »", lambda: self._shift("month", "next")),
        ]
        for text, handler in nav:
            action = QAction(text, self)
            action.triggered.connect(handler)
            self.toolbar.addAction(action)
        self.range_label = QLabel("")
        self.range_label.setStyleSheet("QLabel { font-weight: bold; padding: 0 12px; }")
        self.toolbar.addWidget(self.range_label)
        self.toolbar.addSeparator()
        self.add_action = QAction("Add Deliverable…", self)
        self.add_action.triggered.connect(self._on_pick_date)
        self.toolbar.addAction(self.add_action)
        self.refresh_action = QAction("Refresh", self)
        self.refresh_action.triggered.connect(self.refresh)
        self.toolbar.addAction(self.refresh_action)
        self.settings_action = QAction("Settings", self)
        self.settings_action.triggered.connect(lambda: SettingsDialog(self).exec_())
        self.toolbar.addAction(self.settings_action)
        self.sign_out_action = QAction("Sign Out", self)
        self.sign_out_action.triggered.connect(self._on_sign_out)
        self.toolbar.addAction(self.sign_out_action)

        # --- Sidebar ---
        sidebar = QWidget()
        sv = QVBoxLayout(sidebar)
        sv.addWidget(QLabel("<b>Projects</b>"))
        self.project_list = ProjectList()
        self.project_list.itemDoubleClicked.connect(lambda _i: self._on_history())
        sv.addWidget(self.project_list, 1)
        new_project_btn = QPushButton("New Project…")
        new_project_btn.clicked.connect(lambda: CreateProjectDialog(self).exec_())
        history_btn = QPushButton("History && Catch-up…")
        history_btn.clicked.connect(self._on_history)
        sv.addWidget(new_project_btn)
        sv.addWidget(history_btn)
        self.user_label = QLabel("")
        self.user_label.setStyleSheet("color: #666666;")
        sv.addWidget(self.user_label)

        # --- Week grid ---
        self.grid = QWidget()
        self.grid_layout = QHBoxLayout(self.grid)

        splitter = QSplitter(Qt.Horizontal)
        splitter.addWidget(sidebar)
        splitter.addWidget(self.grid)
        splitter.setSizes([220, 1060])

        self.status_label = SpinningLabel()
        self.status_label.setMinimumHeight(30)
        self._status_reset_timer = QTimer()
        self._status_reset_timer.setSingleShot(True)
        self._status_reset_timer.timeout.connect(lambda: self.set_status(AppStatus.READY))
        self.notice_label = QLabel("")

        status_row = QHBoxLayout()
        status_row.addWidget(self.status_label)
        status_row.addWidget(self.notice_label, 1)

        central = QWidget()
        main_layout = QVBoxLayout(central)
        main_layout.addWidget(splitter, 1)
        main_layout.addLayout(status_row)
        self.setCentralWidget(central)

        self.set_status(AppStatus.READY)
        self.render_board()
        QTimer.singleShot(0, self._ensure_signed_in)

    # --- Session ---
    @property
    def session(self):
        return self.store.current_session()

    def _ensure_signed_in(self) -> None:
        if self._signing_in:
            return
        if self.session is not None:
            self._on_signed_in()
            return
        self._signing_in = True
        try:
            accepted = SignInDialog(self).exec_() == QDialog.Accepted
        finally:
            self._signing_in = False
        if not accepted:
            logger.info("Sign-in dismissed; closing")
            self.close()
            return
        self._on_signed_in()

    def _on_signed_in(self) -> None:
        session = self.session
        self.user_label.setText(session.email)
        logger.info(f"Session ready for {session.email}")
        self.use_api_key(None)
        controller = self.controller
        self.bg.run(
            lambda: controller.load_profile(session),
            on_done=lambda p: self.use_api_key(p.llm_api_key) if p and p.llm_api_key else None,
            on_error=self.handle_error,
        )
        self.refresh()

    def _on_sign_out(self) -> None:
        self.bg.run(self.store.sign_out, on_error=self.handle_error)

    def _on_signed_out(self) -> None:
        self.user_label.setText("")
        self.render_projects()
        self.render_board()
        QTimer.singleShot(0, self._ensure_signed_in)

    def use_api_key(self, api_key: Optional[str]) -> None:
        session = self.session
        self.controller.text_service = TextService.from_config(
            api_key=api_key, access_token=session.access_token if session else None
        )
        logger.info(f"Text service configured ({'profile key' if api_key else 'environment key'})")

    # --- Status & errors ---
    def set_status(self, status: AppStatus, auto_reset_seconds: Optional[int] = None) -> None:
        message, color, should_spin = status.value
        self.status_label.setText(message)
        self.status_label.setStyleSheet(
            f"QLabel {{ padding: 5px; border-radius: 3px; font-weight: bold; "
            f"background-color: {color}; color: white; }}"
        )
        if should_spin:
            self.status_label.start_spinning()
        else:
            self.status_label.stop_spinning()
        self._status_reset_timer.stop()
        if auto_reset_seconds:
            self._status_reset_timer.start(auto_reset_seconds * 1000)

    def _on_notify(self, level: str, message: str) -> None:
        colors = {"success": "#28A745", "error": "#DC3545"}
        self.notice_label.setStyleSheet(f"color: {colors.get(level, '#333333')};")
        self.notice_label.setText(message)
        QTimer.singleShot(4000, lambda: self.notice_label.setText("")
                          if self.notice_label.text() == message else None)

    def handle_error(self, error: Exception) -> None:
        if isinstance(error, NotAuthenticated):
            logger.warning(f"Not authenticated: {error}")
            self.set_status(AppStatus.READY)
            # Drop the stale session; the sign-out notification brings up sign-in
            self.bg.run(self.store.sign_out, on_error=lambda e: logger.error(f"Sign-out failed: {e}"))
        elif isinstance(error, OperationInProgress):
            logger.info(str(error))
        elif isinstance(error, (ReportRequired, ValueError)):
            self.set_status(AppStatus.READY)
            QMessageBox.information(self, "DailyFlow", str(error))
        elif isinstance(error, StoreError):
            self.set_status(AppStatus.ERROR, 5)
            QMessageBox.warning(self, "DailyFlow", f"Could not reach your data: {error}")
        else:
            self.set_status(AppStatus.ERROR, 5)
            QMessageBox.warning(self, "DailyFlow", f"Unexpected error: {error}")

    # --- Data ---
    def refresh(self) -> None:
        session = self.session
        if session is None:
            return
        self.set_status(AppStatus.LOADING)
        controller = self.controller
        self.bg.run(
            lambda: controller.refresh(session),
            on_done=self._refreshed,
            on_error=self.handle_error,
            busy=[self.refresh_action],
        )

    def _refreshed(self, result) -> None:
        if result is None:
            self.set_status(AppStatus.ERROR, 5)
            return
        self.render_projects()
        self.render_board()
        self.set_status(AppStatus.READY)

    def render_projects(self) -> None:
        self.project_list.set_projects(self.controller.projects)

    def render_board(self) -> None:
        while self.grid_layout.count():
            item = self.grid_layout.takeAt(0)
            if item.widget() is not None:
                item.widget().deleteLater()
        for cell in self.board.cells(self.controller.deliverables):
            widget = DateCellWidget(cell)
            widget.project_dropped.connect(self._on_project_dropped)
            widget.deliverable_clicked.connect(self.open_deliverable)
            widget.toggle_requested.connect(self._on_toggle_done)
            widget.overflow_clicked.connect(lambda c: DayListDialog(self, c).exec_())
            self.grid_layout.addWidget(widget, 1)
        self.range_label.setText(self.board.range_label)

    # --- Board interactions ---
    def _shift(self, unit: str, direction: str) -> None:
        self.board.shift_range(unit, direction)
        self.render_board()

    def _go_today(self) -> None:
        self.board.go_to_today()
        self.render_board()

    def _on_project_dropped(self, project_id: str, day: date) -> None:
        proposal = self.board.placement_proposed(project_id, day)
        if proposal is None:
            return
        self._open_draft(proposal)

    def _on_pick_date(self) -> None:
        if not self.controller.projects:
            QMessageBox.information(self, "Add Deliverable", "Create a project first.")
            return
        dlg = PickDateDialog(self)
        if dlg.exec_() != QDialog.Accepted:
            return
        project_id, day = dlg.selection()
        proposal = self.board.pick_date(project_id, day)
        if proposal is None:
            QMessageBox.information(self, "Add Deliverable", "Deliverables can't be scheduled in the past.")
            return
        self._open_draft(proposal)

    def _open_draft(self, proposal) -> None:
        try:
            draft = self.controller.open_draft(proposal)
        except ValueError as e:
            self.handle_error(e)
            return
        DeliverableDialog(self, draft=draft).exec_()

    def open_deliverable(self, deliverable_id: str) -> None:
        deliverable = next((d for d in self.controller.deliverables if d.id == deliverable_id), None)
        if deliverable is None:
            logger.warning(f"Deliverable {deliverable_id} no longer loaded")
            return
        DeliverableDetailDialog(self, deliverable).exec_()

    def _on_toggle_done(self, deliverable_id: str) -> None:
        controller, session = self.controller, self.session

        def failed(error: Exception) -> None:
            self.render_board()
            if isinstance(error, ReportRequired):
                # Completion needs a report; send the user to the completion dialog
                self.open_deliverable(deliverable_id)
            else:
                self.handle_error(error)

        self.bg.run(
            lambda: controller.toggle_done(session, deliverable_id),
            on_done=lambda _ok: self.render_board(),
            on_error=failed,
        )

    def _on_history(self) -> None:
        project_id = self.project_list.current_project_id()
        project = self.controller.project(project_id) if project_id else None
        if project is None:
            QMessageBox.information(self, "History", "Select a project first.")
            return
        ProjectHistoryDialog(self, project).exec_()

    def closeEvent(self, event) -> None:
        if self.recorder.is_recording:
            self.recorder.stop()
        self.controller.close()
        logger.info("App shutting down")
        super().closeEvent(event)


def run_app() -> None:
    app = QApplication(sys.argv)
    app.setApplicationName("DailyFlow")
    window = MainWindow()
    window.show()
    sys.exit(app.exec_())
