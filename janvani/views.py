# Derived views: pure functions of (session, work items, today).
# Recomputed on every state change; nothing here is stored.

from dataclasses import dataclass, field
from datetime import date, timedelta
from statistics import mean
from typing import Dict, Iterable, Optional, Tuple

from .models import Category, Priority, Session, Status, WorkItem

TREND_DAYS = 7


@dataclass(frozen=True)
class DayCount:
    day: date
    submitted: int = 0
    resolved: int = 0


@dataclass(frozen=True)
class DerivedViews:
    my_work_items: Tuple[WorkItem, ...] = ()
    by_status: Dict[Status, int] = field(default_factory=dict)
    by_category: Dict[Category, int] = field(default_factory=dict)
    by_priority: Dict[Priority, int] = field(default_factory=dict)
    by_ward: Dict[int, int] = field(default_factory=dict)
    daily: Tuple[DayCount, ...] = ()
    resolved_today: int = 0
    critical_pending: int = 0
    satisfaction: int = 0
    avg_resolution_days: Optional[float] = None
    streak: int = 0


def owned_by(item: WorkItem, session: Optional[Session]) -> bool:
    return session is not None and item.owner_id in session.identities


def my_work_items(items: Iterable[WorkItem], session: Optional[Session]) -> Tuple[WorkItem, ...]:
    """Admins see everything; citizens see only items they own, under either identity."""
    if session is None:
        return ()
    if session.is_admin:
        return tuple(items)
    return tuple(item for item in items if owned_by(item, session))


def _count(items: Iterable[WorkItem], attr: str, keys: Iterable) -> Dict:
    counts = dict.fromkeys(keys, 0)
    for item in items:
        value = getattr(item, attr)
        counts[value] = counts.get(value, 0) + 1
    return counts


def count_by_status(items: Iterable[WorkItem]) -> Dict[Status, int]:
    return _count(items, "status", Status)


def count_by_category(items: Iterable[WorkItem]) -> Dict[Category, int]:
    return _count(items, "category", Category)


def count_by_priority(items: Iterable[WorkItem]) -> Dict[Priority, int]:
    return _count(items, "priority", Priority)


def count_by_ward(items: Iterable[WorkItem]) -> Dict[int, int]:
    return dict(sorted(_count(items, "ward", ()).items()))


def _resolved_on(item: WorkItem) -> Optional[date]:
    if item.status is not Status.RESOLVED:
        return None
    if item.timeline[-1].completed_on:
        return item.timeline[-1].completed_on
    return item.updated_at.date() if item.updated_at else None


def daily_counts(items: Iterable[WorkItem], today: date, days: int = TREND_DAYS) -> Tuple[DayCount, ...]:
    """Submitted/resolved counts for each of the trailing *days* days, oldest first."""
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    submitted = dict.fromkeys(window, 0)
    resolved = dict.fromkeys(window, 0)
    for item in items:
        created = item.created_at.date() if item.created_at else None
        if created in submitted:
            submitted[created] += 1
        closed = _resolved_on(item)
        if closed in resolved:
            resolved[closed] += 1
    return tuple(DayCount(day, submitted[day], resolved[day]) for day in window)


def resolved_today(items: Iterable[WorkItem], today: date) -> int:
    return sum(1 for item in items if _resolved_on(item) == today)


def critical_pending(items: Iterable[WorkItem]) -> int:
    return sum(1 for item in items if item.priority is Priority.CRITICAL and not item.status.is_terminal)


def satisfaction(items: Iterable[WorkItem]) -> int:
    """Mean feedback rating as a percentage (rating * 20); 0 with no feedback."""
    ratings = [item.feedback.rating for item in items if item.feedback]
    return round(mean(ratings) * 20) if ratings else 0


def avg_resolution_days(items: Iterable[WorkItem]) -> Optional[float]:
    spans = [
        (item.updated_at - item.created_at).total_seconds() / 86400
        for item in items
        if item.status is Status.RESOLVED and item.created_at and item.updated_at
    ]
    return round(mean(spans), 1) if spans else None


def streak(items: Iterable[WorkItem], session: Optional[Session], today: date) -> int:
    """Consecutive days, ending today, on which the session owner submitted something."""
    days = {item.created_at.date() for item in items if item.created_at and owned_by(item, session)}
    count = 0
    day = today
    while day in days:
        count += 1
        day -= timedelta(days=1)
    return count


def derive(session: Optional[Session], items: Iterable[WorkItem], today: date) -> DerivedViews:
    scoped = my_work_items(items, session)
    return DerivedViews(
        my_work_items=scoped,
        by_status=count_by_status(scoped),
        by_category=count_by_category(scoped),
        by_priority=count_by_priority(scoped),
        by_ward=count_by_ward(scoped),
        daily=daily_counts(scoped, today),
        resolved_today=resolved_today(scoped, today),
        critical_pending=critical_pending(scoped),
        satisfaction=satisfaction(scoped),
        avg_resolution_days=avg_resolution_days(scoped),
        streak=streak(scoped, session, today),
    )
