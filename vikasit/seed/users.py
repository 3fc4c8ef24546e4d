# Seed data: Users (demo citizens and the built-in administrator)

from ..config import BUILTIN_ADMIN_EMAIL
from . import new_id, now_utc, pwd_context

# ---------------------------------------------------------------------------
# Raw user definitions
# ---------------------------------------------------------------------------
USERS = [
    # ---- Citizens ----
    {"email": "demo@vikasitjharkhand.gov.in", "password": "demo123",
     "name": "Demo Citizen", "phone": "9876500001", "role": "citizen",
     "notifications_enabled": True},

    {"email": "sunita.oraon@email.com", "password": "citizen123",
     "name": "Sunita Oraon", "phone": "9876500002", "role": "citizen",
     "notifications_enabled": False},

    {"email": "rakesh.mahto@email.com", "password": "citizen123",
     "name": "Rakesh Mahto", "phone": "9876500003", "role": "citizen",
     "notifications_enabled": True},

    # ---- Admin ----
    {"email": BUILTIN_ADMIN_EMAIL, "password": "admin123",
     "name": "Municipal Administrator", "phone": "", "role": "admin",
     "notifications_enabled": False},
]

# ---------------------------------------------------------------------------
# Import function
# ---------------------------------------------------------------------------
async def import_users(db) -> dict:
    """Insert seed users into MongoDB. Returns {email: _id} mapping."""
    print("\n  Importing seed users...")
    user_ids = {}
    for u in USERS:
        uid = new_id()
        now = now_utc()
        db.users.insert_one({
            "_id": uid,
            "email": u["email"],
            "hashed_password": pwd_context.hash(u["password"]),
            "name": u["name"],
            "phone": u["phone"],
            "role": u["role"],
            "profile_image_url": None,
            "notifications_enabled": u["notifications_enabled"],
            "created_at": now,
            "updated_at": now,
        })
        user_ids[u["email"]] = uid
        print(f"    {u['email']:40s}  ({u['role']})")
    db.users.create_index([("email", 1)], unique=True)
    print(f"  => {len(USERS)} users created")
    return user_ids
