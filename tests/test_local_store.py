import json

import pytest

from dailyflow.models import Deliverable, Profile, Project, Report
from dailyflow.store import NotAuthenticated, StoreError
from dailyflow.store.base import SIGNED_IN, SIGNED_OUT
from dailyflow.store.local_backend import LocalDataStore


def _project(store, session, name="Launch"):
    return store.insert_project(session, Project(id="", user_id=session.user_id, name=name, color="#10B981"))


def _deliverable(store, session, project, day="2024-06-17", raw="Write post"):
    return store.insert_deliverable(
        session, Deliverable(id="", project_id=project.id, date=day, raw_text=raw, structured_text=raw)
    )


def test_sign_in_with_wrong_password(store, session):
    with pytest.raises(NotAuthenticated):
        store.sign_in("ada@example.com", "wrong")


def test_sign_up_twice_rejected(store, session):
    with pytest.raises(StoreError):
        store.sign_up("ADA@example.com", "other")


def test_auth_listeners_fire_and_unsubscribe(store):
    events = []
    unsubscribe = store.on_auth_state_change(lambda event, s: events.append(event))
    store.sign_up("grace@example.com", "pw")
    store.sign_out()
    unsubscribe()
    store.sign_in("grace@example.com", "pw")
    assert events == [SIGNED_IN, SIGNED_OUT]
    assert store.current_session() is not None


def test_signed_out_session_is_rejected(store, session):
    store.sign_out()
    with pytest.raises(NotAuthenticated):
        store.list_projects(session)


def test_projects_are_scoped_to_user(store, session):
    _project(store, session)
    other = store.sign_up("grace@example.com", "pw")
    assert store.list_projects(other) == []
    assert [p.name for p in store.list_projects(session)] == ["Launch"]


def test_deliverables_sorted_by_date_with_project_joined(store, session):
    project = _project(store, session)
    _deliverable(store, session, project, day="2024-06-20", raw="Later")
    _deliverable(store, session, project, day="2024-06-13", raw="Sooner")
    rows = store.list_deliverables(session)
    assert [d.raw_text for d in rows] == ["Sooner", "Later"]
    assert rows[0].project.name == "Launch"
    assert rows[0].display_color == "#10B981"


def test_deliverable_requires_owned_project(store, session):
    other = store.sign_up("grace@example.com", "pw")
    project = _project(store, other)
    with pytest.raises(StoreError):
        _deliverable(store, session, project)


def test_update_rejects_unknown_fields(store, session):
    project = _project(store, session)
    saved = _deliverable(store, session, project)
    with pytest.raises(StoreError):
        store.update_deliverable(session, saved.id, {"project_id": "elsewhere"})


def test_update_missing_deliverable(store, session):
    with pytest.raises(StoreError):
        store.update_deliverable(session, "nope", {"is_done": True})


def test_reports_need_existing_deliverable(store, session):
    with pytest.raises(StoreError):
        store.insert_report(session, Report(id="", deliverable_id="ghost", raw_text="x", structured_text="x"))


def test_reports_listed_for_requested_deliverables(store, session):
    project = _project(store, session)
    a = _deliverable(store, session, project, raw="A")
    b = _deliverable(store, session, project, raw="B")
    store.insert_report(session, Report(id="", deliverable_id=a.id, raw_text="ra", structured_text="- ra"))
    store.insert_report(session, Report(id="", deliverable_id=b.id, raw_text="rb", structured_text="- rb"))
    assert [r.raw_text for r in store.list_reports(session, [a.id])] == ["ra"]
    assert len(store.list_reports(session, [a.id, b.id])) == 2
    assert store.list_reports(session, []) == []


def test_data_survives_reload(tmp_path):
    path = tmp_path / "store.json"
    first = LocalDataStore(path)
    session = first.sign_up("ada@example.com", "pw")
    project = _project(first, session)
    _deliverable(first, session, project)

    second = LocalDataStore(path)
    again = second.sign_in("ada@example.com", "pw")
    assert [d.raw_text for d in second.list_deliverables(again)] == ["Write post"]


def test_corrupt_store_starts_fresh(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    store = LocalDataStore(path)
    session = store.sign_up("ada@example.com", "pw")
    assert store.list_projects(session) == []


def test_malformed_rows_are_skipped(tmp_path):
    path = tmp_path / "store.json"
    path.write_text(json.dumps({"users": {}, "projects": [{"name": "no id"}, "junk"]}), encoding="utf-8")
    store = LocalDataStore(path)
    session = store.sign_up("ada@example.com", "pw")
    assert store.list_projects(session) == []


def test_profile_upsert(store, session):
    assert store.get_profile(session) is None
    store.upsert_profile(session, Profile(id=session.user_id, llm_api_key="sk-1"))
    store.upsert_profile(session, Profile(id=session.user_id, llm_api_key="sk-2"))
    assert store.get_profile(session).llm_api_key == "sk-2"


def _break_writes(store, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    good_path, store.store_path = store.store_path, blocker / "store.json"
    return good_path


def test_failed_write_leaves_no_partial_state(store, session, tmp_path):
    project = _project(store, session)
    kept = _deliverable(store, session, project, raw="Kept")
    good_path = _break_writes(store, tmp_path)

    with pytest.raises(StoreError):
        _deliverable(store, session, project, raw="Lost")
    with pytest.raises(StoreError):
        store.update_deliverable(session, kept.id, {"is_done": True})
    with pytest.raises(StoreError):
        store.insert_report(session, Report(id="", deliverable_id=kept.id, raw_text="r", structured_text="r"))

    assert [d.raw_text for d in store.list_deliverables(session)] == ["Kept"]
    assert store.list_deliverables(session)[0].is_done is False
    assert store.list_reports(session, [kept.id]) == []

    # The next successful write must not flush the failed ones either
    store.store_path = good_path
    _project(store, session, name="Docs")
    reloaded = LocalDataStore(good_path)
    again = reloaded.sign_in("ada@example.com", "correct horse")
    assert [d.raw_text for d in reloaded.list_deliverables(again)] == ["Kept"]
    assert reloaded.list_reports(again, [kept.id]) == []


def test_failed_sign_up_does_not_create_account(store, tmp_path):
    _break_writes(store, tmp_path)
    with pytest.raises(StoreError):
        store.sign_up("grace@example.com", "pw")
    with pytest.raises(NotAuthenticated):
        store.sign_in("grace@example.com", "pw")


def test_reports_in_the_same_second_list_newest_first(store, session):
    project = _project(store, session)
    item = _deliverable(store, session, project)
    for text in ("first", "second", "third"):
        store.insert_report(session, Report(id="", deliverable_id=item.id, raw_text=text, structured_text=text))
    assert [r.raw_text for r in store.list_reports(session, [item.id])] == ["third", "second", "first"]
