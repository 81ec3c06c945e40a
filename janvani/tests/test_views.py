"""
Derived view tests: role isolation, aggregates and the submission streak.
"""

from datetime import date, datetime, timedelta, timezone

from janvani.models import Category, Feedback, Priority, Session, Status, WorkItem, default_timeline
from janvani.views import (
    avg_resolution_days,
    count_by_status,
    critical_pending,
    daily_counts,
    derive,
    my_work_items,
    resolved_today,
    satisfaction,
    streak,
)

TODAY = date(2026, 10, 19)

CITIZEN = Session.model_validate({"_id": "u1", "id": "pub1", "role": "citizen", "name": "Ravi"})
ADMIN = Session.model_validate({"_id": "a1", "role": "admin", "name": "Meera"})


def at(day: date, hour: int = 10) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


def item(n: int, owner: str = "u1", days_ago: int = 0, **fields) -> WorkItem:
    created = at(TODAY - timedelta(days=days_ago))
    base = dict(storage_id=f"s{n}", complaint_id=f"JV-2026-{n:05d}", owner_id=owner, title=f"Item {n}",
                created_at=created, updated_at=created, timeline=default_timeline(created.date()))
    base.update(fields)
    return WorkItem(**base)


def resolved(n: int, days_to_resolve: int, owner: str = "u1", days_ago: int = 0, **fields) -> WorkItem:
    opened = item(n, owner, days_ago, **fields)
    return opened.resolved(now=opened.created_at + timedelta(days=days_to_resolve))


# ═══════════════════════════════════════════════════════════════════════════════
# ROLE ISOLATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestRoleIsolation:
    def test_citizen_sees_items_under_either_identity(self):
        items = (item(1, "u1"), item(2, "pub1"), item(3, "u2"), item(4, ""))
        assert [i.storage_id for i in my_work_items(items, CITIZEN)] == ["s1", "s2"]

    def test_citizen_never_sees_foreign_items(self):
        owners = ["u1", "pub1", "u2", "u3", "a1", ""]
        items = tuple(item(n, owners[n % len(owners)]) for n in range(60))
        scoped = my_work_items(items, CITIZEN)
        assert all(i.owner_id in CITIZEN.identities for i in scoped)
        assert len(scoped) == sum(1 for i in items if i.owner_id in ("u1", "pub1"))

    def test_admin_sees_everything(self):
        items = (item(1, "u1"), item(2, "u2"))
        assert my_work_items(items, ADMIN) == items

    def test_no_session_sees_nothing(self):
        assert my_work_items((item(1),), None) == ()


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATES
# ═══════════════════════════════════════════════════════════════════════════════

class TestAggregates:
    def test_status_counts_are_zero_filled(self):
        counts = count_by_status((item(1), item(2, status=Status.REJECTED)))
        assert set(counts) == set(Status)
        assert counts[Status.SUBMITTED] == 1 and counts[Status.RESOLVED] == 0

    def test_daily_window_oldest_first(self):
        items = (item(1, days_ago=0), item(2, days_ago=0), item(3, days_ago=6), item(4, days_ago=9),
                 resolved(5, days_to_resolve=2, days_ago=3))
        days = daily_counts(items, TODAY)
        assert [d.day for d in days] == [TODAY - timedelta(days=k) for k in range(6, -1, -1)]
        assert days[-1].submitted == 2
        assert days[0].submitted == 1
        assert days[-2].resolved == 1

    def test_resolved_today_and_critical_pending(self):
        items = (
            resolved(1, days_to_resolve=1, days_ago=1),
            resolved(2, days_to_resolve=1, days_ago=3),
            item(3, priority=Priority.CRITICAL),
            item(4, priority=Priority.CRITICAL, status=Status.REJECTED),
            resolved(5, days_to_resolve=0, priority=Priority.CRITICAL),
        )
        assert resolved_today(items, TODAY) == 2
        assert critical_pending(items) == 1

    def test_satisfaction_is_mean_rating_times_twenty(self):
        items = (
            item(1, feedback=Feedback(rating=4, resolved="yes")),
            item(2, feedback=Feedback(rating=5, resolved="partially")),
            item(3),
        )
        assert satisfaction(items) == 90
        assert satisfaction((item(4),)) == 0

    def test_average_resolution_days(self):
        items = (resolved(1, days_to_resolve=2), resolved(2, days_to_resolve=4), item(3))
        assert avg_resolution_days(items) == 3.0
        assert avg_resolution_days((item(4),)) is None


# ═══════════════════════════════════════════════════════════════════════════════
# STREAK
# ═══════════════════════════════════════════════════════════════════════════════

class TestStreak:
    def test_consecutive_days_ending_today(self):
        items = (item(1, days_ago=0), item(2, days_ago=1), item(3, days_ago=1), item(4, days_ago=2),
                 item(5, days_ago=4))
        assert streak(items, CITIZEN, TODAY) == 3

    def test_zero_without_a_submission_today(self):
        assert streak((item(1, days_ago=1), item(2, days_ago=2)), CITIZEN, TODAY) == 0

    def test_only_own_submissions_count(self):
        assert streak((item(1, owner="u2"),), CITIZEN, TODAY) == 0


# ═══════════════════════════════════════════════════════════════════════════════
# DERIVE
# ═══════════════════════════════════════════════════════════════════════════════

class TestDerive:
    def test_views_follow_role_scope(self):
        items = (item(1, "u1", category=Category.WATER), item(2, "u2", category=Category.ROAD, ward=7))
        citizen_views = derive(CITIZEN, items, TODAY)
        admin_views = derive(ADMIN, items, TODAY)
        assert len(citizen_views.my_work_items) == 1
        assert citizen_views.by_category[Category.WATER] == 1
        assert citizen_views.by_category[Category.ROAD] == 0
        assert admin_views.by_ward == {1: 1, 7: 1}
        assert citizen_views.streak == 1
