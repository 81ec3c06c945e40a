# Seed data: Users (citizens across a few wards, one ward officer)

import logging
from typing import Dict

from ..config import now_utc
from ..models import Role

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Raw user definitions
# ---------------------------------------------------------------------------
USERS = [
    # ---- Citizens (4) ----
    {"key": "citizen1", "role": "citizen", "password": "citizen123",
     "name": "Ravi Kumar", "email": "ravi.kumar@example.in", "phone": "9876543210",
     "ward": 3, "address": "12 MG Road, Sector 4", "pincode": "110001", "language": "English",
     "points": 420},

    {"key": "citizen2", "role": "citizen", "password": "citizen123",
     "name": "Priya Sharma", "email": "priya.sharma@example.in", "phone": "9876543211",
     "ward": 3, "address": "7 Lake View Colony", "pincode": "110001", "language": "Hindi",
     "points": 760},

    {"key": "citizen3", "role": "citizen", "password": "citizen123",
     "name": "Arjun Mehta", "email": "arjun.mehta@example.in", "phone": "9876543212",
     "ward": 7, "address": "44 Station Road", "pincode": "110007", "language": "English",
     "points": 1180},

    {"key": "citizen4", "role": "citizen", "password": "citizen123",
     "name": "Sunita Devi", "email": "sunita.devi@example.in", "phone": "9876543213",
     "ward": 12, "address": "Old Market Lane", "pincode": "110012", "language": "Hindi",
     "points": 90},

    # ---- Admin (1) ----
    {"key": "admin", "role": "admin", "password": "admin123",
     "name": "Meera Iyer", "email": "admin@janvani.gov.in", "phone": "9988776655",
     "department": "Public Works", "post": "Ward Officer"},
]

# ---------------------------------------------------------------------------
# Import function
# ---------------------------------------------------------------------------
def import_users(db) -> Dict[str, str]:
    """Insert seed users into the in-memory store. Returns {key: _id} mapping."""
    user_ids: Dict[str, str] = {}
    for u in USERS:
        fields = {k: v for k, v in u.items() if k not in ("key", "role", "password", "points")}
        role = Role(u["role"])
        if role is Role.ADMIN:
            fields["employeeId"] = f"MUN-{now_utc().year}-{db.next_seq('employee'):04d}"
        user = db.add_user(role, u["password"], **fields)
        user["points"] = u.get("points", 0)
        user_ids[u["key"]] = user["_id"]
        logger.debug("Seeded %-10s %s", u["key"], user["email"])
    logger.info("Seeded %d users", len(USERS))
    return user_ids
