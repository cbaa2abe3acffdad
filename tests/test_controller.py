from datetime import date

import pytest

from conftest import TODAY, StubTextBackend
from dailyflow.assistant import TextAssistant
from dailyflow.board import SchedulingBoard
from dailyflow.controller import (
    DeliverableController,
    OperationInProgress,
    ReportRequired,
)
from dailyflow.models import DeliverableState, Session
from dailyflow.store import NotAuthenticated, StoreError
from dailyflow.text import MAX_SUMMARY_TASKS, TextService
from dailyflow.text.base import TextServiceError, TextServiceUnavailable


NEXT_MONDAY = date(2024, 6, 17)


@pytest.fixture
def notices():
    return []


@pytest.fixture
def controller(store, session, text_service, notices):
    ctrl = DeliverableController(store, text_service, notify=lambda level, msg: notices.append((level, msg)))
    ctrl.refresh(session)
    return ctrl


@pytest.fixture
def launch(controller, session):
    return controller.create_project(session, "Launch", color="#3B82F6")


def _create(controller, session, project, raw="Write launch post", day=NEXT_MONDAY, **kwargs):
    draft = controller.open_draft(SchedulingBoard(today=lambda: TODAY).placement_proposed(project.id, day))
    draft.raw_text = raw
    for key, value in kwargs.items():
        setattr(draft, key, value)
    return controller.save_draft(session, draft)


def test_create_project_refreshes_collection(controller, session, notices):
    project = controller.create_project(session, "  Launch ", description="Q3 launch", color="#3B82F6")
    assert project.name == "Launch"
    assert [p.id for p in controller.projects] == [project.id]
    assert ("success", "Project created successfully!") in notices


def test_create_project_requires_name(controller, session):
    with pytest.raises(ValueError):
        controller.create_project(session, "   ")


def test_draft_defaults_color_to_project(controller, launch):
    draft = controller.open_draft(SchedulingBoard(today=lambda: TODAY).placement_proposed(launch.id, NEXT_MONDAY))
    assert draft.color_override == "#3B82F6"
    assert draft.state == DeliverableState.DRAFT


def test_save_without_preview_stores_raw_as_structured(controller, session, launch, backend):
    saved = _create(controller, session, launch)
    assert saved.raw_text == "Write launch post"
    assert saved.structured_text == "Write launch post"
    assert saved.date == "2024-06-17"
    assert saved.is_done is False
    assert backend.calls == []

    [loaded] = controller.deliverables_for(launch.id)
    assert loaded.id == saved.id
    assert loaded.state == DeliverableState.PENDING
    assert loaded.display_color == "#3B82F6"


def test_save_with_applied_preview(controller, session, launch):
    saved = _create(controller, session, launch, raw="draft post, email list", applied_preview="- Draft post\n- Email list")
    assert saved.raw_text == "draft post, email list"
    assert saved.structured_text == "- Draft post\n- Email list"


def test_save_rejects_blank_text(controller, session, launch):
    with pytest.raises(ValueError):
        _create(controller, session, launch, raw="   ")
    assert controller.deliverables == []


def test_unknown_project_draft_rejected(controller):
    board = SchedulingBoard(today=lambda: TODAY)
    with pytest.raises(ValueError):
        controller.open_draft(board.placement_proposed("missing", NEXT_MONDAY))


def test_refresh_reports_changes(controller, session, launch, store):
    saved = _create(controller, session, launch)
    store.update_deliverable(session, saved.id, {"notes": "changed elsewhere"})
    result = controller.refresh(session)
    assert result.changed == [saved.id]
    assert result.added == [] and result.removed == []


def test_edit_writes_only_changed_fields(controller, session, launch, store, monkeypatch):
    saved = _create(controller, session, launch)
    edit = controller.begin_edit(saved.id)
    edit.notes = "ask design for hero image"

    seen = {}
    original_update = store.update_deliverable

    def spy(sess, deliverable_id, fields):
        seen.update(fields)
        return original_update(sess, deliverable_id, fields)

    monkeypatch.setattr(store, "update_deliverable", spy)
    controller.close_edit(session, edit)
    assert seen == {"notes": "ask design for hero image"}


def test_edit_raw_text_without_preview_resets_structured(controller, session, launch):
    saved = _create(controller, session, launch, applied_preview="- Old bullets")
    edit = controller.begin_edit(saved.id)
    edit.raw_text = "New wording"
    updated = controller.close_edit(session, edit)
    assert updated.raw_text == "New wording"
    assert updated.structured_text == "New wording"


def test_unchanged_edit_issues_no_write(controller, session, launch, store, monkeypatch):
    saved = _create(controller, session, launch)
    edit = controller.begin_edit(saved.id)
    monkeypatch.setattr(store, "update_deliverable", lambda *a: pytest.fail("unexpected write"))
    assert controller.close_edit(session, edit).id == saved.id


def test_complete_with_applied_preview(controller, session, launch, store, backend):
    saved = _create(controller, session, launch)
    assert controller.complete(session, saved.id, "done both", applied_preview="- Completed both items")

    [report] = controller.reports_for(session, saved.id)
    assert report.raw_text == "done both"
    assert report.structured_text == "- Completed both items"
    assert controller.deliverables_for(launch.id)[0].state == DeliverableState.DONE
    assert backend.calls == []


def test_complete_structures_report_through_service(controller, session, launch, backend):
    saved = _create(controller, session, launch)
    controller.complete(session, saved.id, "shipped it")
    [report] = controller.reports_for(session, saved.id)
    assert report.structured_text == "- Structured"
    assert backend.calls == [("structure_text", "shipped it")]


def test_complete_falls_back_to_raw_when_service_fails(store, session, notices):
    backend = StubTextBackend(error=TextServiceUnavailable("No API key"))
    controller = DeliverableController(store, TextService(backend), notify=lambda level, msg: notices.append((level, msg)))
    controller.create_project(session, "Launch")
    saved = _create(controller, session, controller.projects[0])
    assert controller.complete(session, saved.id, "shipped it")
    [report] = controller.reports_for(session, saved.id)
    assert report.structured_text == "shipped it"


def test_complete_requires_report(controller, session, launch, store):
    saved = _create(controller, session, launch)
    with pytest.raises(ReportRequired):
        controller.complete(session, saved.id, "   ")
    assert store.list_reports(session, [saved.id]) == []
    assert controller.deliverables_for(launch.id)[0].is_done is False


def test_failed_flag_update_leaves_report_and_pending(controller, session, launch, store, monkeypatch, notices):
    saved = _create(controller, session, launch)

    def broken(*args):
        raise StoreError("network down")

    monkeypatch.setattr(store, "update_deliverable", broken)
    assert controller.complete(session, saved.id, "done", applied_preview="- Done") is False
    assert ("error", "Failed to complete") in notices
    assert len(store.list_reports(session, [saved.id])) == 1
    assert store.list_deliverables(session)[0].is_done is False


def test_failed_report_insert_does_not_flip_flag(controller, session, launch, store, monkeypatch, notices):
    saved = _create(controller, session, launch)

    def broken(*args):
        raise StoreError("insert failed")

    monkeypatch.setattr(store, "insert_report", broken)
    assert controller.complete(session, saved.id, "done", applied_preview="- Done") is False
    assert ("error", "Failed to complete") in notices
    assert store.list_deliverables(session)[0].is_done is False


def test_reopen_keeps_reports(controller, session, launch):
    saved = _create(controller, session, launch)
    controller.complete(session, saved.id, "done", applied_preview="- Done")
    assert controller.reopen(session, saved.id)
    assert controller.deliverables_for(launch.id)[0].state == DeliverableState.PENDING
    assert len(controller.reports_for(session, saved.id)) == 1


def test_toggle_done_reopens_but_never_completes_without_report(controller, session, launch):
    saved = _create(controller, session, launch)
    with pytest.raises(ReportRequired):
        controller.toggle_done(session, saved.id)
    assert controller.deliverables_for(launch.id)[0].is_done is False

    controller.complete(session, saved.id, "done", applied_preview="- Done")
    assert controller.toggle_done(session, saved.id)
    assert controller.deliverables_for(launch.id)[0].is_done is False


def test_add_report_appends_without_state_change(controller, session, launch):
    saved = _create(controller, session, launch)
    controller.add_report(session, saved.id, "halfway", applied_preview="- Halfway")
    controller.add_report(session, saved.id, "almost", applied_preview="- Almost")
    reports = controller.reports_for(session, saved.id)
    assert len(reports) == 2
    assert controller.deliverables_for(launch.id)[0].is_done is False


def test_duplicate_submission_rejected(controller, session, launch):
    saved = _create(controller, session, launch)
    with controller._guard(f"complete:{saved.id}"):
        with pytest.raises(OperationInProgress):
            controller.complete(session, saved.id, "done", applied_preview="- Done")


def test_operations_require_session(controller, launch):
    with pytest.raises(NotAuthenticated):
        controller.refresh(None)
    with pytest.raises(NotAuthenticated):
        controller.create_project(None, "Other")
    with pytest.raises(NotAuthenticated):
        controller.reports_for(Session(user_id="u", email="x", access_token=""), "d1")


def test_sign_out_clears_collections(store, session, text_service):
    redirected = []
    controller = DeliverableController(store, text_service, on_signed_out=lambda: redirected.append(True))
    controller.create_project(session, "Launch")
    assert controller.projects
    store.sign_out()
    assert controller.projects == [] and controller.deliverables == []
    assert redirected == [True]


def test_project_history_newest_first_with_reports(controller, session, launch):
    first = _create(controller, session, launch, raw="Kickoff", day=date(2024, 6, 13))
    second = _create(controller, session, launch, raw="Retro", day=date(2024, 6, 20))
    controller.complete(session, first.id, "kicked off", applied_preview="- Kicked off")

    history = controller.project_history(session, launch.id)
    assert [h.deliverable.id for h in history] == [second.id, first.id]
    assert [r.structured_text for r in history[1].reports] == ["- Kicked off"]
    assert history[0].reports == []


def test_catch_up_summary_limits_tasks(controller, session, launch, backend):
    for i in range(12):
        _create(controller, session, launch, raw=f"Task {i:02d}", day=date(2024, 6, 13 + i))

    summary = controller.catch_up_summary(session, launch.id)
    assert summary == "## Summary"
    [(_, name, context, instructions)] = [c for c in backend.calls if c[0] == "summarize_project"]
    assert name == "Launch"
    assert context.count("TITLE:") == MAX_SUMMARY_TASKS
    # newest first: the two oldest tasks are dropped
    assert "Task 11" in context
    assert "Task 00" not in context and "Task 01" not in context
    assert instructions


def test_catch_up_summary_without_deliverables(controller, session, launch, backend, notices):
    assert controller.catch_up_summary(session, launch.id) is None
    assert backend.calls == []
    assert notices[-1][0] == "info"


def test_catch_up_summary_failure_notifies(store, session, notices):
    backend = StubTextBackend(error=TextServiceError("server error 500"))
    controller = DeliverableController(store, TextService(backend), notify=lambda level, msg: notices.append((level, msg)))
    project = controller.create_project(session, "Launch")
    _create(controller, session, project)
    assert controller.catch_up_summary(session, project.id) is None
    assert ("error", "Failed to generate summary") in notices


def test_profile_api_key_roundtrip(controller, session):
    assert controller.load_profile(session) is None
    assert controller.save_api_key(session, " sk-test ")
    assert controller.load_profile(session).llm_api_key == "sk-test"


def test_edit_reapplying_stored_preview_keeps_it(controller, session, launch):
    bullets = "- Fix bug\n- Write docs"
    saved = _create(controller, session, launch, raw="fix bug, write docs", applied_preview=bullets)
    edit = controller.begin_edit(saved.id)
    edit.raw_text = "fix bug, write docs, ship"
    edit.applied_preview = bullets
    updated = controller.close_edit(session, edit)
    assert updated.raw_text == "fix bug, write docs, ship"
    assert updated.structured_text == bullets


def test_edit_with_new_preview_persists_it(controller, session, launch):
    saved = _create(controller, session, launch, raw="fix bug")
    edit = controller.begin_edit(saved.id)
    edit.applied_preview = "- Fix the login bug"
    updated = controller.close_edit(session, edit)
    assert updated.raw_text == "fix bug"
    assert updated.structured_text == "- Fix the login bug"


def test_preview_then_complete_through_assistants(controller, session, launch, backend, recorder, tmp_path):
    saved = _create(controller, session, launch, raw="fix bug; write docs")
    assert saved.structured_text == "fix bug; write docs"
    assert saved.is_done is False

    edit = controller.begin_edit(saved.id)
    editing = TextAssistant(controller.text_service, recorder, tmp_path, draft=edit.raw_text)
    backend.structured = "- Fix bug\n- Write docs"
    editing.request_preview()
    edit.applied_preview = editing.apply_preview()
    assert controller.close_edit(session, edit).structured_text == "- Fix bug\n- Write docs"

    reporting = TextAssistant(controller.text_service, recorder, tmp_path)
    reporting.set_draft("done both")
    backend.structured = "- Completed both items"
    reporting.request_preview()
    reporting.apply_preview()
    assert controller.complete(session, saved.id, reporting.draft, reporting.applied)

    [report] = controller.reports_for(session, saved.id)
    assert report.raw_text == "done both"
    assert report.structured_text == "- Completed both items"
    assert controller.deliverables_for(launch.id)[0].is_done is True


def test_dismissed_preview_saves_typed_text(controller, session, launch, backend, recorder, tmp_path):
    draft = controller.open_draft(SchedulingBoard(today=lambda: TODAY).placement_proposed(launch.id, NEXT_MONDAY))
    assistant = TextAssistant(controller.text_service, recorder, tmp_path, draft="fix bug; write docs")
    assistant.request_preview()
    assistant.dismiss_preview()
    draft.raw_text = assistant.draft
    draft.applied_preview = assistant.applied
    saved = controller.save_draft(session, draft)
    assert saved.structured_text == "fix bug; write docs"


def test_failed_local_write_is_not_kept(controller, session, launch, store, tmp_path, notices):
    _create(controller, session, launch, raw="fix bug")
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    store.store_path = blocker / "store.json"

    assert _create(controller, session, launch, raw="write docs", day=date(2024, 6, 18)) is None
    assert ("error", "Failed to save deliverable") in notices
    controller.refresh(session)
    assert [d.raw_text for d in controller.deliverables] == ["fix bug"]
