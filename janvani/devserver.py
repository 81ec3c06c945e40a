# JANVANI reference API: an in-memory FastAPI app speaking the same HTTP contract
# as the production service. The client tests run against it through
# httpx.ASGITransport; `python -m janvani.devserver` serves it with uvicorn.

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import bcrypt
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, config, views
from .config import new_id, now_utc
from .models import (
    POINTS_FOR_FEEDBACK,
    POINTS_FOR_RESOLUTION,
    POINTS_FOR_SUBMISSION,
    POINTS_FOR_SUPPORT,
    Category,
    Feedback,
    GeoPoint,
    Priority,
    Role,
    Status,
    WorkItem,
    WorkItemDraft,
    badge_for,
    default_timeline,
)

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/citizen/login", auto_error=False)

DEPARTMENTS = {
    Category.ROAD: "Roads & Infrastructure",
    Category.WATER: "Water Supply",
    Category.SANITATION: "Sanitation",
    Category.ELECTRICITY: "Electricity",
    Category.OTHER: "General Administration",
}

# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------
class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class CitizenRegister(_Body):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=200)
    password: str = Field(..., min_length=6, max_length=128)
    phone: str = Field(..., min_length=1, max_length=20)
    ward: int = Field(..., ge=1, le=20)
    age: Optional[int] = Field(None, ge=0, le=130)
    address: str = Field("", max_length=500)
    pincode: str = Field("", max_length=10)
    aadhar_last4: str = Field("", alias="aadharLast4", max_length=4)
    language: str = "English"

class AdminRegister(_Body):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=200)
    password: str = Field(..., min_length=6, max_length=128)
    phone: str = Field(..., min_length=1, max_length=20)
    department: str = Field(..., min_length=1, max_length=100)
    post: str = "Junior Officer"
    joined_date: Optional[str] = Field(None, alias="joinedDate")

class LoginRequest(_Body):
    email: str
    password: str

class ForgotPasswordRequest(_Body):
    email: str

class ResetPasswordRequest(_Body):
    email: str
    new_password: str = Field(..., alias="newPassword", min_length=6, max_length=128)

class StatusUpdate(_Body):
    status: Status
    admin_note: Optional[str] = Field(None, alias="adminNote", max_length=2000)
    assigned_officer: Optional[str] = Field(None, alias="assignedOfficer", max_length=200)

class ResolveRequest(_Body):
    resolve_photo: str = Field("", alias="resolvePhoto")
    admin_note: str = Field("", alias="adminNote", max_length=2000)
    assigned_officer: str = Field("", alias="assignedOfficer", max_length=200)

class ProfileUpdate(_Body):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    ward: Optional[int] = Field(None, ge=1, le=20)
    pincode: Optional[str] = Field(None, max_length=10)
    language: Optional[str] = None
    department: Optional[str] = None
    post: Optional[str] = None

class PasswordChange(_Body):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword", min_length=6, max_length=128)

# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------
class MemoryDB:
    """Users (plain dicts, wire-shaped) and complaints (WorkItem) for one app instance."""

    def __init__(self, bcrypt_rounds: int = config.BCRYPT_ROUNDS):
        self.users: Dict[str, dict] = {}
        self.complaints: Dict[str, WorkItem] = {}
        self.counters: Dict[str, int] = {}
        self.otps: Dict[str, str] = {}
        self.bcrypt_rounds = bcrypt_rounds

    def next_seq(self, name: str) -> int:
        self.counters[name] = self.counters.get(name, 0) + 1
        return self.counters[name]

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode("utf-8")

    @staticmethod
    def verify_password(plain: str, hashed: str) -> bool:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))

    def find_user(self, email: str, role: Optional[Role] = None) -> Optional[dict]:
        email = email.strip().lower()
        for user in self.users.values():
            if user["email"] == email and (role is None or user["role"] == role.value):
                return user
        return None

    def add_user(self, role: Role, password: str, **fields) -> dict:
        uid = new_id()
        user = {
            "_id": uid, "role": role.value, "password": self.hash_password(password),
            "points": 0, "complaintsSubmitted": 0, "complaintsResolved": 0,
            "createdAt": now_utc(), **fields,
        }
        user["email"] = user["email"].strip().lower()
        self.users[uid] = user
        return user

    def award(self, user_id: str, points: int, **counters: int) -> None:
        user = self.users.get(user_id)
        if user is None or user["role"] == Role.ADMIN.value:
            return
        user["points"] += points
        for name, delta in counters.items():
            user[name] = user.get(name, 0) + delta

    def find_complaint(self, ref: str) -> Optional[WorkItem]:
        item = self.complaints.get(ref)
        if item is not None:
            return item
        return next((c for c in self.complaints.values() if c.complaint_id == ref), None)

    def save(self, item: WorkItem) -> WorkItem:
        self.complaints[item.storage_id] = item
        return item

    def add_complaint(self, draft: WorkItemDraft, owner: dict, created_at: Optional[datetime] = None) -> WorkItem:
        created_at = created_at or now_utc()
        seq = self.next_seq("complaint")
        item = WorkItem(
            storage_id=new_id(),
            complaint_id=f"JV-{now_utc().year}-{seq:05d}",
            owner_id=owner["_id"],
            citizen_name=owner["name"],
            citizen_phone=owner.get("phone") or "",
            citizen_email=owner["email"],
            title=draft.title,
            description=draft.description,
            category=draft.category,
            priority=draft.priority,
            ward=draft.ward or owner.get("ward") or 1,
            location=draft.location,
            gps_coords=draft.gps_coords or GeoPoint(),
            photo=draft.photo,
            department=DEPARTMENTS[draft.category],
            estimated_resolution=draft.estimated_resolution,
            is_sos=draft.is_sos,
            sos_type=draft.sos_type,
            timeline=default_timeline(created_at.date()),
            created_at=created_at,
            updated_at=created_at,
        )
        return self.save(item)

# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def public_user(user: dict) -> dict:
    data = {k: v for k, v in user.items() if k != "password"}
    data["id"] = user["_id"]
    data["badge"] = badge_for(user["points"]).value
    return data

def leaderboard_row(user: dict) -> dict:
    keys = ("_id", "name", "ward", "points", "complaintsSubmitted", "complaintsResolved")
    row = {k: user.get(k) for k in keys}
    row["badge"] = badge_for(user["points"]).value
    return row

def complaint_out(item: WorkItem) -> dict:
    return item.model_dump(mode="json", by_alias=True)

# ---------------------------------------------------------------------------
# Auth Helpers
# ---------------------------------------------------------------------------
def get_db(request: Request) -> MemoryDB:
    return request.app.state.db

def create_access_token(request: Request, user: dict) -> str:
    claims = {
        "sub": user["_id"], "role": user["role"],
        "exp": datetime.now(timezone.utc) + timedelta(hours=config.JWT_EXPIRE_HOURS),
    }
    return jwt.encode(claims, request.app.state.jwt_secret, algorithm=config.JWT_ALGORITHM)

async def get_current_user(request: Request, token: Optional[str] = Depends(oauth2_scheme),
                           db: MemoryDB = Depends(get_db)) -> dict:
    if token is None:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    try:
        payload = jwt.decode(token, request.app.state.jwt_secret, algorithms=[config.JWT_ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise HTTPException(status_code=401, detail="Token invalid or expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Token invalid or expired")
    user = db.users.get(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user

def require_role(role: Role):
    async def role_checker(user=Depends(get_current_user)):
        if user["role"] != role.value:
            raise HTTPException(status_code=403, detail=f"Access denied, {role.value}s only")
        return user
    return role_checker

def load_complaint(db: MemoryDB, ref: str, message: str = "Complaint not found") -> WorkItem:
    item = db.find_complaint(ref)
    if item is None:
        raise HTTPException(status_code=404, detail=message)
    return item

router = APIRouter(prefix="/api")

# ---------------------------------------------------------------------------
# Auth Routes
# ---------------------------------------------------------------------------
@router.post("/auth/citizen/register", status_code=201)
async def register_citizen(body: CitizenRegister, request: Request, db: MemoryDB = Depends(get_db)):
    if db.find_user(body.email):
        raise HTTPException(status_code=409, detail="Email already registered")
    user = db.add_user(
        Role.CITIZEN, body.password, name=body.name, email=body.email, phone=body.phone,
        ward=body.ward, age=body.age, address=body.address, pincode=body.pincode,
        aadharLast4=body.aadhar_last4, language=body.language,
    )
    logger.info("Registered citizen %s", user["email"])
    return {"success": True, "token": create_access_token(request, user), "user": public_user(user)}

@router.post("/auth/admin/register", status_code=201)
async def register_admin(body: AdminRegister, request: Request, db: MemoryDB = Depends(get_db)):
    if db.find_user(body.email):
        raise HTTPException(status_code=409, detail="Email already registered")
    employee_id = f"MUN-{now_utc().year}-{db.next_seq('employee'):04d}"
    user = db.add_user(
        Role.ADMIN, body.password, name=body.name, email=body.email, phone=body.phone,
        department=body.department, post=body.post or "Junior Officer",
        joinedDate=body.joined_date, employeeId=employee_id,
    )
    logger.info("Registered admin %s (%s)", user["email"], employee_id)
    return {"success": True, "token": create_access_token(request, user), "user": public_user(user)}

async def _login(role: Role, body: LoginRequest, request: Request, db: MemoryDB) -> dict:
    user = db.find_user(body.email, role)
    if not user or not db.verify_password(body.password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"success": True, "token": create_access_token(request, user), "user": public_user(user)}

@router.post("/auth/citizen/login")
async def login_citizen(body: LoginRequest, request: Request, db: MemoryDB = Depends(get_db)):
    return await _login(Role.CITIZEN, body, request, db)

@router.post("/auth/admin/login")
async def login_admin(body: LoginRequest, request: Request, db: MemoryDB = Depends(get_db)):
    return await _login(Role.ADMIN, body, request, db)

@router.get("/auth/me")
async def get_me(user=Depends(get_current_user)):
    return {"success": True, "user": public_user(user)}

@router.post("/auth/forgot-password")
async def forgot_password(body: ForgotPasswordRequest, db: MemoryDB = Depends(get_db)):
    user = db.find_user(body.email)
    if user is None:
        raise HTTPException(status_code=404, detail="No account with that email")
    otp = f"{secrets.randbelow(900000) + 100000}"
    db.otps[user["email"]] = otp
    logger.info("[DEV] OTP for %s: %s", user["email"], otp)
    return {"success": True, "message": "OTP sent to email (check server logs in dev)", "otp_dev": otp}

@router.post("/auth/reset-password")
async def reset_password(body: ResetPasswordRequest, db: MemoryDB = Depends(get_db)):
    user = db.find_user(body.email)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    user["password"] = db.hash_password(body.new_password)
    db.otps.pop(user["email"], None)
    return {"success": True, "message": "Password reset successful"}

# ---------------------------------------------------------------------------
# Complaint Routes
# ---------------------------------------------------------------------------
@router.post("/complaints", status_code=201)
async def create_complaint(draft: WorkItemDraft, user=Depends(require_role(Role.CITIZEN)),
                           db: MemoryDB = Depends(get_db)):
    item = db.add_complaint(draft, user)
    db.award(user["_id"], POINTS_FOR_SUBMISSION, complaintsSubmitted=1)
    logger.info("Complaint %s filed by %s", item.complaint_id, user["email"])
    return {"success": True, "complaint": complaint_out(item)}

@router.get("/complaints")
async def list_complaints(
    category: Optional[Category] = None,
    priority: Optional[Priority] = None,
    status: Optional[Status] = None,
    ward: Optional[int] = Query(None, ge=1, le=20),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    user=Depends(get_current_user),
    db: MemoryDB = Depends(get_db),
):
    items = list(db.complaints.values())
    if user["role"] == Role.CITIZEN.value:
        items = [c for c in items if c.owner_id == user["_id"]]
    if category:
        items = [c for c in items if c.category is category]
    if priority:
        items = [c for c in items if c.priority is priority]
    if status:
        items = [c for c in items if c.status is status]
    if ward:
        items = [c for c in items if c.ward == ward]
    if search:
        needle = search.lower()
        items = [c for c in items
                 if needle in c.title.lower() or needle in (c.complaint_id or "").lower()
                 or needle in c.citizen_name.lower()]
    items.sort(key=lambda c: c.created_at, reverse=True)
    start = (page - 1) * limit
    return {"success": True, "complaints": [complaint_out(c) for c in items[start:start + limit]],
            "total": len(items)}

@router.get("/complaints/stats")
async def complaint_stats(user=Depends(require_role(Role.ADMIN)), db: MemoryDB = Depends(get_db)):
    items = list(db.complaints.values())
    today = now_utc().date()
    return {"success": True, "stats": {
        "total": len(items),
        "resolvedToday": views.resolved_today(items, today),
        "critical": views.critical_pending(items),
        "satisfaction": views.satisfaction(items),
        "categories": [{"name": c.value, "count": n} for c, n in views.count_by_category(items).items() if n],
        "wards": [{"ward": w, "count": n} for w, n in views.count_by_ward(items).items()],
    }}

@router.get("/complaints/{ref}")
async def get_complaint(ref: str, user=Depends(get_current_user), db: MemoryDB = Depends(get_db)):
    item = load_complaint(db, ref)
    if user["role"] == Role.CITIZEN.value and item.owner_id != user["_id"]:
        raise HTTPException(status_code=403, detail="Access denied")
    return {"success": True, "complaint": complaint_out(item)}

@router.patch("/complaints/{ref}/status")
async def update_status(ref: str, body: StatusUpdate, user=Depends(require_role(Role.ADMIN)),
                        db: MemoryDB = Depends(get_db)):
    item = load_complaint(db, ref)
    item = db.save(item.advanced_to(body.status, body.admin_note, body.assigned_officer))
    logger.info("Complaint %s -> %s", item.complaint_id, item.status.value)
    return {"success": True, "complaint": complaint_out(item)}

@router.patch("/complaints/{ref}/resolve")
async def resolve_complaint(ref: str, body: ResolveRequest, user=Depends(require_role(Role.ADMIN)),
                            db: MemoryDB = Depends(get_db)):
    item = load_complaint(db, ref)
    item = db.save(item.resolved(body.resolve_photo, body.admin_note, body.assigned_officer))
    db.award(item.owner_id, POINTS_FOR_RESOLUTION, complaintsResolved=1)
    logger.info("Complaint %s resolved", item.complaint_id)
    return {"success": True, "complaint": complaint_out(item)}

@router.post("/complaints/{ref}/support")
async def support_complaint(ref: str, user=Depends(require_role(Role.CITIZEN)), db: MemoryDB = Depends(get_db)):
    item = load_complaint(db, ref)
    if user["_id"] in item.supported_by:
        raise HTTPException(status_code=400, detail="Already supported")
    item = db.save(item.supported(user["_id"]))
    db.award(item.owner_id, POINTS_FOR_SUPPORT)
    return {"success": True, "supportCount": item.support_count}

@router.post("/complaints/{ref}/feedback")
async def submit_feedback(ref: str, feedback: Feedback, user=Depends(require_role(Role.CITIZEN)),
                          db: MemoryDB = Depends(get_db)):
    item = load_complaint(db, ref, "Not found")
    if item.status is not Status.RESOLVED:
        raise HTTPException(status_code=400, detail="Can only rate resolved complaints")
    if item.owner_id != user["_id"]:
        raise HTTPException(status_code=403, detail="Not your complaint")
    if item.feedback is not None:
        raise HTTPException(status_code=400, detail="Already submitted feedback")
    item = db.save(item.model_copy(update={"feedback": feedback}))
    db.award(user["_id"], POINTS_FOR_FEEDBACK)
    return {"success": True, "complaint": complaint_out(item)}

@router.delete("/complaints/{ref}")
async def delete_complaint(ref: str, user=Depends(require_role(Role.ADMIN)), db: MemoryDB = Depends(get_db)):
    item = load_complaint(db, ref, "Not found")
    del db.complaints[item.storage_id]
    logger.info("Complaint %s deleted", item.complaint_id)
    return {"success": True, "message": "Complaint deleted"}

# ---------------------------------------------------------------------------
# User Routes
# ---------------------------------------------------------------------------
@router.get("/users/leaderboard")
async def leaderboard(ward: Optional[int] = Query(None, ge=1, le=20),
                      citywide: bool = Query(False, alias="global"),
                      limit: int = Query(50, ge=1, le=100),
                      user=Depends(get_current_user), db: MemoryDB = Depends(get_db)):
    citizens = [u for u in db.users.values() if u["role"] == Role.CITIZEN.value]
    if ward and not citywide:
        citizens = [u for u in citizens if u.get("ward") == ward]
    citizens.sort(key=lambda u: u["points"], reverse=True)
    return {"success": True, "leaderboard": [leaderboard_row(u) for u in citizens[:limit]]}

@router.get("/users/me")
async def get_profile(user=Depends(get_current_user)):
    return {"success": True, "user": public_user(user)}

@router.patch("/users/me")
async def update_profile(body: ProfileUpdate, user=Depends(get_current_user)):
    user.update(body.model_dump(exclude_none=True))
    return {"success": True, "user": public_user(user)}

@router.patch("/users/me/password")
async def change_password(body: PasswordChange, user=Depends(get_current_user), db: MemoryDB = Depends(get_db)):
    if not db.verify_password(body.current_password, user["password"]):
        raise HTTPException(status_code=400, detail="Current password incorrect")
    user["password"] = db.hash_password(body.new_password)
    return {"success": True, "message": "Password updated"}

@router.get("/users")
async def list_citizens(user=Depends(require_role(Role.ADMIN)), db: MemoryDB = Depends(get_db)):
    citizens = [public_user(u) for u in db.users.values() if u["role"] == Role.CITIZEN.value]
    return {"success": True, "users": citizens}

@router.get("/health")
async def health():
    return {"success": True, "status": "ok", "version": __version__}

# ---------------------------------------------------------------------------
# App Factory
# ---------------------------------------------------------------------------
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"success": False, "message": exc.detail}, status_code=exc.status_code,
                        headers=getattr(exc, "headers", None))

async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return JSONResponse({"success": False, "message": "Invalid request"}, status_code=400)
    where = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
    return JSONResponse({"success": False, "message": f"{where}: {errors[0]['msg']}"}, status_code=400)

def create_app(secret: Optional[str] = None, seed: bool = True,
               bcrypt_rounds: int = config.BCRYPT_ROUNDS) -> FastAPI:
    secret = secret or config.JWT_SECRET
    if not secret:
        secret = secrets.token_urlsafe(32)
        logger.warning("JANVANI_JWT_SECRET is not set; using a random secret, tokens will not survive a restart")
    app = FastAPI(title="JANVANI reference API", version=__version__)
    app.state.db = MemoryDB(bcrypt_rounds)
    app.state.jwt_secret = secret
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    if seed:
        from .seed import import_all
        import_all(app.state.db)
    return app

def main():
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host=config.DEV_HOST, port=config.DEV_PORT)

if __name__ == "__main__":
    main()
