# Seed data: Complaints (one per status, spread over the last week)
#
# Coverage matrix:
#   Statuses   : Submitted (2), Under Review (1), In Progress (1), Resolved (2), Rejected (1)
#   Categories : all five represented
#   Priorities : Low, Medium, High, Critical
#   Special    : feedback on one resolved item, supporters, SOS entry

import logging
from datetime import timedelta
from typing import Dict, List

from ..config import now_utc
from ..models import Feedback, GeoPoint, Status, WorkItem, WorkItemDraft

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Complaint records
# ---------------------------------------------------------------------------
COMPLAINTS = [
    # 1 - fresh, citizen1
    {"title": "Deep pothole near MG Road bus stop",
     "description": "A pothole roughly half a metre wide has opened in front of the bus stop. Two-wheelers are swerving into traffic to avoid it.",
     "category": "Road", "priority": "High", "ward": 3, "location": "MG Road bus stop, Sector 4",
     "gps": (28.6139, 77.2090), "status": "Submitted", "days_ago": 0, "owner": "citizen1",
     "supporters": ["citizen2"]},

    # 2 - in progress, critical, citizen1
    {"title": "No water supply for three days",
     "description": "The entire lane has had no municipal water since Monday. Tanker requests have gone unanswered.",
     "category": "Water", "priority": "Critical", "ward": 3, "location": "Lane 2, Sector 4",
     "status": "In Progress", "days_ago": 2, "owner": "citizen1",
     "note": "Pipeline burst traced near the pumping station", "officer": "Er. S. Rao"},

    # 3 - resolved with feedback, citizen2
    {"title": "Garbage not collected for a week",
     "description": "Bins at the colony gate are overflowing and stray animals are spreading the waste.",
     "category": "Sanitation", "priority": "Medium", "ward": 3, "location": "Lake View Colony gate",
     "status": "Resolved", "days_ago": 5, "resolved_after": 2, "owner": "citizen2",
     "note": "Collection route restored", "officer": "Sanitation Inspector K. Das",
     "feedback": {"rating": 4, "comment": "Cleared, but took a while", "resolved": "yes"}},

    # 4 - resolved, awaiting feedback, citizen1
    {"title": "Streetlight out on Station Road",
     "description": "The streetlight outside house 44 has been off for over a week, the stretch is completely dark at night.",
     "category": "Electricity", "priority": "Low", "ward": 3, "location": "Station Road, near house 44",
     "status": "Resolved", "days_ago": 6, "resolved_after": 1, "owner": "citizen1",
     "note": "Lamp and choke replaced", "officer": "Lineman P. Singh"},

    # 5 - under review, SOS, citizen3
    {"title": "Open manhole on the school route",
     "description": "The manhole cover is missing right outside the primary school gate.",
     "category": "Road", "priority": "Critical", "ward": 7, "location": "Govt. Primary School, Ward 7",
     "status": "Under Review", "days_ago": 1, "owner": "citizen3",
     "is_sos": True, "sos_type": "Public Safety", "supporters": ["citizen4"]},

    # 6 - fresh, citizen4
    {"title": "Sewage overflowing onto the street",
     "description": "Sewage has been backing up from the drain near the market for three days.",
     "category": "Sanitation", "priority": "High", "ward": 12, "location": "Old Market Lane",
     "status": "Submitted", "days_ago": 3, "owner": "citizen4"},

    # 7 - rejected, citizen2
    {"title": "Neighbour's construction debris",
     "description": "Debris from a private construction site is stored on the footpath.",
     "category": "Other", "priority": "Low", "ward": 3, "location": "7 Lake View Colony",
     "status": "Rejected", "days_ago": 8, "owner": "citizen2",
     "note": "Private dispute, referred to the building department"},
]

# ---------------------------------------------------------------------------
# Import function
# ---------------------------------------------------------------------------
def import_complaints(db, user_ids: Dict[str, str]) -> List[WorkItem]:
    """Insert seed complaints with consistent timelines. Returns the stored items."""
    now = now_utc()
    items: List[WorkItem] = []
    for c in COMPLAINTS:
        owner = db.users[user_ids[c["owner"]]]
        created = now - timedelta(days=c["days_ago"], minutes=5)
        draft = WorkItemDraft(
            title=c["title"], description=c["description"], category=c["category"],
            priority=c["priority"], ward=c["ward"], location=c["location"],
            gps_coords=GeoPoint(lat=c["gps"][0], lng=c["gps"][1]) if c.get("gps") else None,
            is_sos=c.get("is_sos", False), sos_type=c.get("sos_type", ""),
        )
        item = db.add_complaint(draft, owner, created_at=created)
        db.award(owner["_id"], 0, complaintsSubmitted=1)

        status = Status(c["status"])
        if status is Status.RESOLVED:
            item = item.resolved(note=c.get("note", ""), officer=c.get("officer", ""),
                                 now=created + timedelta(days=c["resolved_after"]))
            db.award(owner["_id"], 0, complaintsResolved=1)
        elif status is not Status.SUBMITTED:
            item = item.advanced_to(status, c.get("note"), c.get("officer"), now=created + timedelta(hours=3))
        if c.get("feedback"):
            item = item.model_copy(update={"feedback": Feedback(**c["feedback"])})
        for key in c.get("supporters", ()):
            item = item.supported(user_ids[key])
        items.append(db.save(item))
        logger.debug("Seeded %s  %s", item.complaint_id, item.title[:50])
    logger.info("Seeded %d complaints", len(items))
    return items
