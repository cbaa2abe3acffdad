from datetime import date, datetime

from dailyflow.models import (
    DEFAULT_COLOR,
    Deliverable,
    DeliverableState,
    Project,
    Report,
    date_str,
    now_iso,
    parse_date,
)


def test_deliverable_from_row_with_joined_project():
    row = {
        "id": "d1",
        "project_id": "p1",
        "date": "2024-06-17T00:00:00",
        "raw_text": "write post",
        "structured_text": None,
        "is_done": 1,
        "project": {"id": "p1", "user_id": "u1", "name": "Launch", "color": "#3B82F6"},
    }
    d = Deliverable.from_dict(row)
    assert d.date == "2024-06-17"
    assert d.structured_text == "write post"
    assert d.state == DeliverableState.DONE
    assert d.project.name == "Launch"
    assert d.display_color == "#3B82F6"
    assert "project" not in d.to_dict()


def test_display_title_prefers_title_then_first_bullet():
    d = Deliverable(id="d", project_id="p", date="2024-06-17", raw_text="x", structured_text="• First line\n- second")
    assert d.display_title == "First line"
    d.title = "Explicit"
    assert d.display_title == "Explicit"


def test_display_color_override_and_default():
    d = Deliverable(id="d", project_id="p", date="2024-06-17", raw_text="x", structured_text="x")
    assert d.display_color == DEFAULT_COLOR
    d.color_override = "#EF4444"
    assert d.display_color == "#EF4444"


def test_equality_ignores_joined_project():
    a = Deliverable(id="d", project_id="p", date="2024-06-17", raw_text="x", structured_text="x",
                    created_at="t", updated_at="t")
    b = Deliverable(id="d", project_id="p", date="2024-06-17", raw_text="x", structured_text="x",
                    created_at="t", updated_at="t", project=Project(id="p", user_id="u", name="Launch"))
    assert a == b


def test_project_defaults_color():
    assert Project.from_dict({"id": "p", "name": "Launch", "color": ""}).color == DEFAULT_COLOR


def test_report_structured_falls_back_to_raw():
    r = Report.from_dict({"id": "r", "deliverable_id": "d", "raw_text": "did it"})
    assert r.structured_text == "did it"


def test_date_helpers():
    assert date_str(date(2024, 1, 5)) == "2024-01-05"
    assert parse_date("2024-01-05T10:00:00Z") == date(2024, 1, 5)
    assert Deliverable(id="d", project_id="p", date="2024-01-05", raw_text="", structured_text="").day == date(2024, 1, 5)


def test_timestamps_carry_microseconds():
    stamp = now_iso()
    assert "." in stamp
    assert datetime.fromisoformat(stamp).tzinfo is not None
