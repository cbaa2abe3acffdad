import calendar
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Literal, Optional

from loguru import logger

from dailyflow.models import Deliverable, date_str


MAX_INLINE = 3

RangeUnit = Literal["week", "month"]
Direction = Literal["prev", "next"]


@dataclass(frozen=True)
class PlacementProposal:
    project_id: str
    target_date: date


@dataclass
class DateCell:
    day: date
    is_today: bool
    is_past: bool
    deliverables: List[Deliverable] = field(default_factory=list)

    @property
    def key(self) -> str:
        return date_str(self.day)

    @property
    def weekday_label(self) -> str:
        return self.day.strftime("%a")

    @property
    def count(self) -> int:
        return len(self.deliverables)

    @property
    def inline(self) -> List[Deliverable]:
        return self.deliverables[:MAX_INLINE]

    @property
    def overflow(self) -> int:
        return max(0, self.count - MAX_INLINE)

    @property
    def overflow_label(self) -> str:
        return f"+{self.overflow} more" if self.overflow else ""


def week_start(d: date) -> date:
    """Monday of the week containing d."""
    return d - timedelta(days=d.weekday())


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class SchedulingBoard:
    """Week view over the deliverable collection.

    The board owns only its anchor date; deliverables are passed in by the
    controller on every render.
    """

    def __init__(self, today: Callable[[], date] = date.today, anchor: Optional[date] = None) -> None:
        self._today = today
        self.anchor = anchor or today()

    @property
    def today(self) -> date:
        return self._today()

    def visible_dates(self) -> List[date]:
        start = week_start(self.anchor)
        return [start + timedelta(days=i) for i in range(7)]

    def shift_range(self, unit: RangeUnit, direction: Direction) -> List[date]:
        if direction not in ("prev", "next"):
            raise ValueError(f"Unknown direction: {direction}")
        step = 1 if direction == "next" else -1
        if unit == "week":
            self.anchor = self.anchor + timedelta(days=7 * step)
        elif unit == "month":
            self.anchor = add_months(self.anchor, step)
        else:
            raise ValueError(f"Unknown range unit: {unit}")
        return self.visible_dates()

    def go_to_today(self) -> List[date]:
        self.anchor = self.today
        return self.visible_dates()

    @property
    def range_label(self) -> str:
        days = self.visible_dates()
        if week_start(self.today) == days[0]:
            return "This Week"
        return f"{days[0].strftime('%b %d')} – {days[-1].strftime('%b %d, %Y')}"

    def bucket(self, deliverables: Iterable[Deliverable]) -> "OrderedDict[date, List[Deliverable]]":
        buckets: "OrderedDict[date, List[Deliverable]]" = OrderedDict((d, []) for d in self.visible_dates())
        keys: Dict[str, date] = {date_str(d): d for d in buckets}
        for deliverable in deliverables:
            day = keys.get(deliverable.date)
            if day is not None:
                buckets[day].append(deliverable)
        return buckets

    def cells(self, deliverables: Iterable[Deliverable]) -> List[DateCell]:
        today = self.today
        return [
            DateCell(day=day, is_today=day == today, is_past=day < today, deliverables=items)
            for day, items in self.bucket(deliverables).items()
        ]

    def placement_proposed(self, project_id: str, target_date: date) -> Optional[PlacementProposal]:
        """Accept a drop onto a date cell. Drops onto past days are silently ignored."""
        if target_date < self.today:
            logger.debug(f"Ignoring placement of {project_id} onto past date {target_date}")
            return None
        return PlacementProposal(project_id=project_id, target_date=target_date)

    def pick_date(self, project_id: str, target_date: date) -> Optional[PlacementProposal]:
        """Date-picker path used where dragging is impractical; same past-date policy."""
        return self.placement_proposed(project_id, target_date)
