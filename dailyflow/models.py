"""Record types shared by the data store, the controller and the UI."""

import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


PRESET_COLORS = [
    "#8B5CF6", "#EC4899", "#F59E0B", "#10B981", "#3B82F6", "#EF4444", "#14B8A6", "#F97316"
]
DEFAULT_COLOR = PRESET_COLORS[0]

_BULLET_RE = re.compile(r"^\s*[•\-\*]\s*")


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def date_str(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def parse_date(value: str) -> date:
    return datetime.strptime(value[:10], "%Y-%m-%d").date()


def _opt(v) -> Optional[str]:
    if v is None:
        return None
    s = str(v)
    return s if s else None


class DeliverableState(Enum):
    DRAFT = "draft"
    PENDING = "pending"
    DONE = "done"


@dataclass
class Project:
    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    color: str = DEFAULT_COLOR
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @staticmethod
    def from_dict(d: dict) -> "Project":
        return Project(
            id=str(d.get("id", "")),
            user_id=str(d.get("user_id", "")),
            name=str(d.get("name", "")),
            description=_opt(d.get("description")),
            color=str(d.get("color") or DEFAULT_COLOR),
            created_at=str(d.get("created_at", "")),
            updated_at=str(d.get("updated_at", "")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Deliverable:
    id: str
    project_id: str
    date: str  # YYYY-MM-DD
    raw_text: str
    structured_text: str
    title: Optional[str] = None
    notes: Optional[str] = None
    tag: Optional[str] = None
    color_override: Optional[str] = None
    is_done: bool = False
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    # Joined on read, never persisted
    project: Optional[Project] = field(default=None, compare=False, repr=False)

    @staticmethod
    def from_dict(d: dict) -> "Deliverable":
        """Build a Deliverable tolerantly from a stored row.

        A joined ``project`` dict (as returned by the hosted backend) is
        converted to a Project. ``structured_text`` falls back to the raw text
        so rows written by older clients still display something.
        """
        raw = str(d.get("raw_text") or "")
        project = d.get("project")
        return Deliverable(
            id=str(d.get("id", "")),
            project_id=str(d.get("project_id", "")),
            date=str(d.get("date", ""))[:10],
            raw_text=raw,
            structured_text=str(d.get("structured_text") or raw),
            title=_opt(d.get("title")),
            notes=_opt(d.get("notes")),
            tag=_opt(d.get("tag")),
            color_override=_opt(d.get("color_override")),
            is_done=bool(d.get("is_done", False)),
            created_at=str(d.get("created_at", "")),
            updated_at=str(d.get("updated_at", "")),
            project=Project.from_dict(project) if isinstance(project, dict) else None,
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("project", None)
        return d

    @property
    def state(self) -> DeliverableState:
        return DeliverableState.DONE if self.is_done else DeliverableState.PENDING

    @property
    def day(self) -> date:
        return parse_date(self.date)

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        text = self.structured_text or self.raw_text or ""
        first = text.split("\n")[0]
        return _BULLET_RE.sub("", first)[:120]

    @property
    def display_color(self) -> str:
        if self.color_override:
            return self.color_override
        if self.project is not None and self.project.color:
            return self.project.color
        return DEFAULT_COLOR


@dataclass(frozen=True)
class Report:
    id: str
    deliverable_id: str
    raw_text: str
    structured_text: str
    created_at: str = field(default_factory=now_iso)

    @staticmethod
    def from_dict(d: dict) -> "Report":
        raw = str(d.get("raw_text") or "")
        return Report(
            id=str(d.get("id", "")),
            deliverable_id=str(d.get("deliverable_id", "")),
            raw_text=raw,
            structured_text=str(d.get("structured_text") or raw),
            created_at=str(d.get("created_at", "")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Profile:
    id: str
    llm_api_key: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @staticmethod
    def from_dict(d: dict) -> "Profile":
        return Profile(
            id=str(d.get("id", "")),
            llm_api_key=_opt(d.get("llm_api_key")),
            created_at=str(d.get("created_at", "")),
            updated_at=str(d.get("updated_at", "")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Session:
    user_id: str
    email: str
    access_token: str
    refresh_token: Optional[str] = None
