# Domain model for the JANVANI grievance client
# Wire names are camelCase (the API is a Node/Mongo service); Python names are snake_case.

from datetime import date, datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from .config import now_utc

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Role(str, Enum):
    CITIZEN = "citizen"
    ADMIN = "admin"

class Category(str, Enum):
    ROAD = "Road"
    WATER = "Water"
    SANITATION = "Sanitation"
    ELECTRICITY = "Electricity"
    OTHER = "Other"

class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

class Status(str, Enum):
    SUBMITTED = "Submitted"
    UNDER_REVIEW = "Under Review"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    REJECTED = "Rejected"

    @property
    def step(self) -> Optional[int]:
        """Timeline index this status completes, None for Rejected."""
        return STATUS_STEP.get(self)

    @property
    def is_terminal(self) -> bool:
        return self in (Status.RESOLVED, Status.REJECTED)

class ResolutionJudgment(str, Enum):
    YES = "yes"
    NO = "no"
    PARTIALLY = "partially"

class Badge(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"

STATUS_STEP: Dict[Status, int] = {
    Status.SUBMITTED: 0,
    Status.UNDER_REVIEW: 1,
    Status.IN_PROGRESS: 2,
    Status.RESOLVED: 3,
}
TIMELINE_LABELS = ("Submitted", "Under Review", "In Progress", "Resolved")

# Points the server awards; mirrored locally so the score moves without a refetch
POINTS_FOR_SUBMISSION = 50
POINTS_FOR_FEEDBACK = 25
POINTS_FOR_RESOLUTION = 100
POINTS_FOR_SUPPORT = 10

def badge_for(points: int) -> Badge:
    if points >= 1000:
        return Badge.GOLD
    if points >= 500:
        return Badge.SILVER
    return Badge.BRONZE

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class UserProfile(BaseModel):
    """A user record as the API returns it (roster and leaderboard rows too)."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    storage_id: Optional[str] = Field(None, alias="_id")
    public_id: Optional[str] = Field(None, alias="id")
    role: Role = Role.CITIZEN
    name: str = ""
    email: str = ""
    phone: str = ""
    ward: Optional[int] = None
    address: Optional[str] = None
    pincode: Optional[str] = None
    language: Optional[str] = None
    points: int = 0
    complaints_submitted: int = Field(0, alias="complaintsSubmitted")
    complaints_resolved: int = Field(0, alias="complaintsResolved")
    employee_id: Optional[str] = Field(None, alias="employeeId")
    department: Optional[str] = None
    post: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    @computed_field
    @property
    def badge(self) -> Badge:
        return badge_for(self.points)

    @property
    def identities(self) -> FrozenSet[str]:
        return frozenset(i for i in (self.storage_id, self.public_id) if i)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def awarded(self, points: int, **counters: int) -> "UserProfile":
        """Copy with *points* added and each named counter incremented."""
        update = {"points": self.points + points}
        for name, delta in counters.items():
            update[name] = getattr(self, name) + delta
        return self.model_copy(update=update)

class Session(UserProfile):
    """The authenticated principal. Role never changes for its lifetime."""

    @model_validator(mode="after")
    def check_identity(self):
        if not self.identities:
            raise ValueError("Session needs an _id or id")
        return self

# ---------------------------------------------------------------------------
# Work items (complaints)
# ---------------------------------------------------------------------------
class TimelineStep(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    label: str
    done: bool = False
    completed_on: Optional[date] = Field(None, alias="date")

def default_timeline(today: Optional[date] = None) -> Tuple[TimelineStep, ...]:
    today = today or now_utc().date()
    return tuple(
        TimelineStep(label=label, done=(i == 0), completed_on=today if i == 0 else None)
        for i, label in enumerate(TIMELINE_LABELS)
    )

class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(0, ge=-90, le=90)
    lng: float = Field(0, ge=-180, le=180)

class Feedback(BaseModel):
    model_config = ConfigDict(frozen=True)

    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=2000)
    resolved: ResolutionJudgment

class WorkItem(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    storage_id: Optional[str] = Field(None, alias="_id")
    complaint_id: Optional[str] = Field(None, alias="complaintId")
    owner_id: str = Field("", alias="citizenId")
    citizen_name: str = Field("", alias="citizenName")
    citizen_phone: str = Field("", alias="citizenPhone")
    citizen_email: Optional[str] = Field(None, alias="citizenEmail")
    title: str
    description: str = ""
    category: Category = Category.OTHER
    priority: Priority = Priority.MEDIUM
    status: Status = Status.SUBMITTED
    ward: int = 1
    location: str = ""
    gps_coords: GeoPoint = Field(default_factory=GeoPoint, alias="gpsCoords")
    photo: str = ""
    resolve_photo: str = Field("", alias="resolvePhoto")
    admin_note: str = Field("", alias="adminNote")
    assigned_officer: str = Field("", alias="assignedOfficer")
    department: str = ""
    merged_count: int = Field(0, alias="mergedCount")
    support_count: int = Field(0, alias="supportCount")
    supported_by: Tuple[str, ...] = Field((), alias="supportedBy")
    timeline: Tuple[TimelineStep, ...] = Field(default_factory=lambda: default_timeline())
    estimated_resolution: str = Field("", alias="estimatedResolution")
    feedback: Optional[Feedback] = None
    is_sos: bool = Field(False, alias="isSOS")
    sos_type: str = Field("", alias="sosType")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @model_validator(mode="before")
    @classmethod
    def unpack_owner(cls, values):
        # GET /complaints populates citizenId as {_id, email}
        if isinstance(values, dict) and isinstance(values.get("citizenId"), dict):
            values = dict(values)
            owner = values["citizenId"]
            values["citizenId"] = owner.get("_id", "")
            if owner.get("email") and not values.get("citizenEmail"):
                values["citizenEmail"] = owner["email"]
        return values

    @field_validator("timeline")
    @classmethod
    def check_timeline(cls, v):
        if not v:
            return default_timeline()
        if tuple(step.label for step in v) != TIMELINE_LABELS:
            raise ValueError(f"Timeline must have steps {TIMELINE_LABELS}")
        return v

    @model_validator(mode="after")
    def check_identity(self):
        if not (self.storage_id or self.complaint_id):
            raise ValueError("Work item needs an _id or complaintId")
        return self

    @property
    def key(self) -> str:
        return self.storage_id or self.complaint_id

    @property
    def identities(self) -> FrozenSet[str]:
        return frozenset(i for i in (self.storage_id, self.complaint_id) if i)

    def matches(self, ref: str) -> bool:
        return ref in self.identities

    def advanced_to(self, status: Status, note: Optional[str] = None, officer: Optional[str] = None,
                    today: Optional[date] = None, now: Optional[datetime] = None) -> "WorkItem":
        """Copy moved to *status*; every timeline step up to it is marked done."""
        status = Status(status)
        now = now or now_utc()
        today = today or now.date()
        timeline = self.timeline
        if status.step is not None:
            timeline = tuple(
                step.model_copy(update={"done": True, "completed_on": today})
                if i <= status.step and not step.done else step
                for i, step in enumerate(timeline)
            )
        update = {"status": status, "timeline": timeline, "updated_at": now}
        if note:
            update["admin_note"] = note
        if officer:
            update["assigned_officer"] = officer
        return self.model_copy(update=update)

    def resolved(self, photo: str = "", note: str = "", officer: str = "",
                 today: Optional[date] = None, now: Optional[datetime] = None) -> "WorkItem":
        now = now or now_utc()
        today = today or now.date()
        timeline = tuple(
            step.model_copy(update={"done": True, "completed_on": step.completed_on or today})
            for step in self.timeline
        )
        return self.model_copy(update={
            "status": Status.RESOLVED,
            "timeline": timeline,
            "resolve_photo": photo or "",
            "admin_note": note or self.admin_note,
            "assigned_officer": officer or self.assigned_officer,
            "updated_at": now,
        })

    def supported(self, supporter: Optional[str] = None, delta: int = 1) -> "WorkItem":
        """Copy with the support count moved by *delta*; *supporter* joins or leaves supported_by."""
        supported_by = self.supported_by
        if supporter and delta > 0 and supporter not in supported_by:
            supported_by = supported_by + (supporter,)
        elif supporter and delta < 0:
            supported_by = tuple(s for s in supported_by if s != supporter)
        return self.model_copy(update={
            "support_count": max(0, self.support_count + delta),
            "supported_by": supported_by,
        })

class WorkItemDraft(BaseModel):
    """Body of POST /complaints."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    category: Category
    priority: Priority = Priority.MEDIUM
    ward: Optional[int] = Field(None, ge=1, le=20)
    location: str = Field("", max_length=500)
    gps_coords: Optional[GeoPoint] = Field(None, alias="gpsCoords")
    photo: str = ""
    estimated_resolution: str = Field("", alias="estimatedResolution")
    is_sos: bool = Field(False, alias="isSOS")
    sos_type: str = Field("", alias="sosType")
