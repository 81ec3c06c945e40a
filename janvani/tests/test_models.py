"""
Domain model tests: timeline monotonicity, badges, wire parsing.
"""

from datetime import date, datetime, timezone

import pydantic
import pytest

from janvani.models import (
    STATUS_STEP,
    TIMELINE_LABELS,
    Badge,
    Session,
    Status,
    UserProfile,
    WorkItem,
    badge_for,
    default_timeline,
)

FILED = date(2026, 10, 1)
TODAY = date(2026, 10, 5)
NOW = datetime(2026, 10, 5, 9, 30, tzinfo=timezone.utc)


def make_item(**overrides) -> WorkItem:
    fields = dict(storage_id="s1", complaint_id="JV-2026-00001", owner_id="u1", title="Pothole",
                  timeline=default_timeline(FILED))
    fields.update(overrides)
    return WorkItem(**fields)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMELINE
# ═══════════════════════════════════════════════════════════════════════════════

class TestTimeline:
    def test_default_timeline(self):
        steps = default_timeline(FILED)
        assert tuple(s.label for s in steps) == TIMELINE_LABELS
        assert [s.done for s in steps] == [True, False, False, False]
        assert steps[0].completed_on == FILED

    @pytest.mark.parametrize("status", list(STATUS_STEP))
    def test_every_step_up_to_status_is_done(self, status):
        item = make_item().advanced_to(status, today=TODAY, now=NOW)
        k = STATUS_STEP[status]
        assert [s.done for s in item.timeline] == [i <= k for i in range(4)]
        assert all(s.completed_on for s in item.timeline[: k + 1])
        assert item.timeline[0].completed_on == FILED

    def test_moving_back_never_undoes_steps(self):
        item = make_item().advanced_to(Status.IN_PROGRESS, today=TODAY, now=NOW)
        item = item.advanced_to(Status.UNDER_REVIEW, today=TODAY, now=NOW)
        assert item.status is Status.UNDER_REVIEW
        assert [s.done for s in item.timeline] == [True, True, True, False]

    def test_rejected_leaves_timeline(self):
        item = make_item()
        rejected = item.advanced_to(Status.REJECTED, note="Duplicate", now=NOW)
        assert rejected.timeline == item.timeline
        assert rejected.admin_note == "Duplicate"
        assert rejected.updated_at == NOW

    def test_resolve_marks_all_done_keeping_dates(self):
        reviewed = make_item().advanced_to(Status.UNDER_REVIEW, today=date(2026, 10, 2), now=NOW)
        resolved = reviewed.resolved(note="Patched", officer="Crew 4", today=TODAY, now=NOW)
        assert resolved.status is Status.RESOLVED
        assert all(s.done for s in resolved.timeline)
        assert [s.completed_on for s in resolved.timeline] == [FILED, date(2026, 10, 2), TODAY, TODAY]
        assert resolved.assigned_officer == "Crew 4"

    def test_wrong_labels_rejected(self):
        steps = [{"label": label, "done": False} for label in ("A", "B", "C", "D")]
        with pytest.raises(pydantic.ValidationError):
            WorkItem.model_validate({"_id": "s1", "title": "x", "timeline": steps})

    def test_empty_timeline_gets_default(self):
        item = WorkItem.model_validate({"_id": "s1", "title": "x", "timeline": []})
        assert tuple(s.label for s in item.timeline) == TIMELINE_LABELS


# ═══════════════════════════════════════════════════════════════════════════════
# WIRE PARSING
# ═══════════════════════════════════════════════════════════════════════════════

class TestWorkItemParsing:
    def test_camel_case_payload(self):
        item = WorkItem.model_validate({
            "_id": "s1", "complaintId": "JV-2026-00007", "citizenId": "u1", "title": "Leak",
            "status": "In Progress", "supportCount": 3, "supportedBy": ["u2"],
            "timeline": [{"label": l, "done": i < 3, "date": "2026-10-0%d" % (i + 1) if i < 3 else None}
                         for i, l in enumerate(TIMELINE_LABELS)],
            "createdAt": "2026-10-01T08:00:00Z",
        })
        assert item.identities == {"s1", "JV-2026-00007"}
        assert item.status is Status.IN_PROGRESS
        assert item.timeline[2].completed_on == date(2026, 10, 3)
        assert item.supported_by == ("u2",)

    def test_populated_owner_is_flattened(self):
        item = WorkItem.model_validate({"_id": "s1", "title": "x",
                                        "citizenId": {"_id": "u9", "email": "u9@example.in"}})
        assert item.owner_id == "u9"
        assert item.citizen_email == "u9@example.in"

    def test_item_needs_an_id(self):
        with pytest.raises(pydantic.ValidationError):
            WorkItem.model_validate({"title": "x"})

    def test_matches_either_id(self):
        item = make_item()
        assert item.matches("s1") and item.matches("JV-2026-00001")
        assert not item.matches("s2")

    def test_support_tracks_supporter(self):
        item = make_item().supported("u2")
        assert (item.support_count, item.supported_by) == (1, ("u2",))
        rolled_back = item.supported("u2", -1)
        assert (rolled_back.support_count, rolled_back.supported_by) == (0, ())


# ═══════════════════════════════════════════════════════════════════════════════
# USERS
# ═══════════════════════════════════════════════════════════════════════════════

class TestUsers:
    @pytest.mark.parametrize("points,badge", [
        (0, Badge.BRONZE), (499, Badge.BRONZE), (500, Badge.SILVER),
        (999, Badge.SILVER), (1000, Badge.GOLD),
    ])
    def test_badge_thresholds(self, points, badge):
        assert badge_for(points) is badge
        assert UserProfile(points=points).badge is badge

    def test_awarded_returns_updated_copy(self):
        user = UserProfile.model_validate({"_id": "u1", "points": 480, "complaintsSubmitted": 2})
        after = user.awarded(50, complaints_submitted=1)
        assert (after.points, after.complaints_submitted, after.badge) == (530, 3, Badge.SILVER)
        assert user.points == 480

    def test_session_needs_identity(self):
        with pytest.raises(pydantic.ValidationError):
            Session.model_validate({"role": "citizen", "name": "Nobody"})
        session = Session.model_validate({"id": "pub-1", "role": "admin"})
        assert session.is_admin and session.identities == {"pub-1"}
