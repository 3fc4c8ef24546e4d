# Vikasit Jharkhand Civic Issue Portal
# FastAPI + MongoDB (GridFS for photos)

import math
import time
import uuid
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from statistics import mean
from typing import List, Optional, Dict, Any
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor

import gridfs
import uvicorn
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import FastAPI, HTTPException, Depends, Query, File, Form, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from fastapi.responses import HTMLResponse, JSONResponse, Response
from starlette.requests import Request
from starlette.middleware.base import BaseHTTPMiddleware
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pymongo import MongoClient, ReturnDocument
from pymongo.errors import ConnectionFailure, PyMongoError
from jose import JWTError, jwt
from passlib.context import CryptContext
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from .config import (
    BASE_DIR, MONGODB_URL, MONGODB_DB, MONGODB_TIMEOUT_MS,
    JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRE_HOURS, BUILTIN_ADMIN_EMAIL,
    MAX_ISSUE_IMAGE_BYTES, MAX_PROFILE_IMAGE_BYTES, IMAGE_UPLOAD_TIMEOUT_SECONDS,
    ALLOWED_IMAGE_TYPES, CORS_ORIGINS,
)
from .models import (
    UserRole, IssueStatus, IssueCategory, CITIZEN_EDITABLE_STATUSES,
    UserCreate, UserLogin, UserUpdate, ProfileUpdate, UserResponse, TokenResponse,
    NotificationPreference, IssueUpdate, IssueAssignment, VendorAssignment,
    IssueResponse, FacetsResponse, MapMarker, MapResponse,
    VendorEntry, VendorResponse, LocationResult, NotificationResponse,
    AnalyticsResponse, OverviewResponse, CitizenSummaryResponse,
)
from .filters import ALL, build_issue_query, reporter_query, collect_facets, match_vendors, as_utc, to_naive_utc
from .location import MAP_CENTER, reverse_geocode, has_coordinates
from .notifications import notify_status_change

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

CATEGORY_VALUES = [c.value for c in IssueCategory]

# ---------------------------------------------------------------------------
# Storage globals (set by init_storage)
# ---------------------------------------------------------------------------
db_client = None
db = None
fs = None
executor = ThreadPoolExecutor(max_workers=10)

def ensure_indexes(database):
    database.issues.create_index("reported_at")
    database.issues.create_index("updated_at")
    database.issues.create_index("status")
    database.issues.create_index("category")
    database.issues.create_index("reported_by")
    database.users.create_index([("email", 1)], unique=True)
    database.vendors.create_index("created_at")
    database.notifications.create_index([("user_email", 1), ("created_at", -1)])

def init_storage(database, blob_store=None):
    """Point the request dependencies at a database and a blob store."""
    global db, fs
    db = database
    fs = blob_store if blob_store is not None else gridfs.GridFS(database)

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
async def startup_db():
    global db_client
    db_client = MongoClient(MONGODB_URL, serverSelectionTimeoutMS=MONGODB_TIMEOUT_MS)
    database = db_client[MONGODB_DB]
    loop = asyncio.get_event_loop()
    try:
        await loop.run_in_executor(executor, ensure_indexes, database)
        logger.info("Database initialized: %s", MONGODB_DB)
    except ConnectionFailure as e:
        # Keep serving; requests that touch the database answer 503 until it is back
        logger.warning("MongoDB unreachable at startup (%s); running degraded", e)
    init_storage(database)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup_db()
    yield
    if db_client:
        db_client.close()

# ---------------------------------------------------------------------------
# App & Middleware
# ---------------------------------------------------------------------------
app = FastAPI(title="Vikasit Jharkhand Civic Issue Portal", lifespan=lifespan)
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(self), camera=(self), microphone=(self)"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data: blob:; "
            "frame-ancestors 'none'"
        )
        return response

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_jinja_env = Environment(
    loader=FileSystemLoader(str(BASE_DIR / "templates")),
    autoescape=select_autoescape(["html", "htm", "xml"]),
)
templates = Jinja2Templates(env=_jinja_env)
app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

@app.exception_handler(ConnectionFailure)
async def database_unavailable_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503,
                        content={"detail": "Service temporarily unavailable. Please try again shortly."})

@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
async def get_db():
    return db

async def get_fs():
    return fs

# ---------------------------------------------------------------------------
# Auth Helpers
# ---------------------------------------------------------------------------
def hash_password(password: str) -> str:
    if len(password.encode("utf-8")) > 72:
        raise ValueError("Password cannot exceed 72 bytes")
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
    # jti keeps two logins in the same second from sharing (and revoking) one token
    to_encode["jti"] = uuid.uuid4().hex
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

_token_blacklist: set = set()

async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)):
    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if token in _token_blacklist:
        raise HTTPException(status_code=401, detail="Token has been revoked")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        email: str = payload.get("sub")
        if email is None:
            raise HTTPException(status_code=401, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {"email": email})
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user

def require_role(*roles):
    async def role_checker(user=Depends(get_current_user)):
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return role_checker

def is_admin(user: dict) -> bool:
    return user["role"] == UserRole.ADMIN.value

def user_to_response(user: dict) -> UserResponse:
    return UserResponse(
        uid=str(user["_id"]), name=user["name"], email=user["email"],
        phone=user.get("phone"), role=user["role"],
        profile_image_url=user.get("profile_image_url"),
        notifications_enabled=user.get("notifications_enabled", False),
        created_at=user["created_at"], updated_at=user.get("updated_at"))

def build_user_doc(user_data: UserCreate) -> dict:
    now = now_utc()
    return {
        "_id": str(uuid.uuid4()), "email": user_data.email,
        "hashed_password": hash_password(user_data.password),
        "name": user_data.name.strip(), "phone": user_data.phone,
        "role": user_data.role.value, "profile_image_url": None,
        "notifications_enabled": False,
        "created_at": now, "updated_at": now,
    }

# ---------------------------------------------------------------------------
# Utility Helpers
# ---------------------------------------------------------------------------
def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def sanitize_str(value: str) -> str:
    """Ensure a value is a plain string, not a dict/list that could be a NoSQL operator."""
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail="Invalid parameter type")
    return str(value)

def validate_uuid(value: str, param_name: str = "id") -> str:
    value = sanitize_str(value)
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError):
        raise HTTPException(status_code=400, detail=f"Invalid {param_name} format")
    return value

def issue_to_response(doc: dict) -> IssueResponse:
    return IssueResponse(**doc, id=doc["_id"])

def vendor_to_response(doc: dict) -> VendorResponse:
    return VendorResponse(**doc, id=doc["_id"])

async def read_image(upload: UploadFile, max_bytes: int, too_large_msg: str) -> bytes:
    if upload.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Only JPEG, PNG, WebP or GIF images are accepted")
    data = await upload.read()
    if len(data) > max_bytes:
        raise HTTPException(status_code=400, detail=too_large_msg)
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded image is empty")
    return data

async def store_image(blob_store, data: bytes, filename: str, content_type: str, metadata: dict) -> str:
    """Write an image to the blob store, racing it against the upload timeout."""
    loop = asyncio.get_event_loop()
    metadata = {**metadata, "content_type": content_type}
    upload = loop.run_in_executor(executor, lambda: blob_store.put(data, filename=filename, metadata=metadata))
    try:
        # shield: the worker thread can't be cancelled, so keep its future alive
        file_id = await asyncio.wait_for(asyncio.shield(upload), timeout=IMAGE_UPLOAD_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        upload.add_done_callback(lambda f: discard_late_upload(blob_store, f))
        raise
    return str(file_id)

def discard_late_upload(blob_store, upload: asyncio.Future):
    """Remove a blob whose put finished after the request gave up on it."""
    if upload.cancelled() or upload.exception() is not None:
        return
    file_id = str(upload.result())
    logger.info("Discarding late upload %s", file_id)
    upload.get_loop().run_in_executor(executor, discard_file, blob_store, file_id)

def discard_file(blob_store, file_id: Optional[str]):
    if not file_id:
        return
    try:
        blob_store.delete(ObjectId(file_id))
    except (InvalidId, gridfs.errors.NoFile, PyMongoError) as e:
        logger.warning("Could not remove stored file %s: %s", file_id, e)

def record_status_change(db, issue_id: str, new_status: str, changed_by: str,
                         extra: Optional[Dict[str, Any]] = None) -> dict:
    now = now_utc()
    set_fields = {"status": new_status, "updated_at": now}
    if extra:
        set_fields.update(extra)
    return db.issues.find_one_and_update(
        {"_id": issue_id},
        {"$set": set_fields,
         "$push": {"status_history": {"status": new_status, "changed_by": changed_by, "changed_at": now}}},
        return_document=ReturnDocument.AFTER)

async def fetch_issue(db, issue_id: str) -> dict:
    loop = asyncio.get_event_loop()
    g = await loop.run_in_executor(executor, db.issues.find_one, {"_id": issue_id})
    if not g:
        raise HTTPException(status_code=404, detail="Issue not found")
    return g

# ---------------------------------------------------------------------------
# AUTH ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/auth/register", response_model=TokenResponse)
@limiter.limit("3/minute")
async def register(request: Request, user_data: UserCreate, db=Depends(get_db)):
    # Public registration is citizen-only; admins are created via the admin panel
    if user_data.role != UserRole.CITIZEN:
        raise HTTPException(status_code=403, detail="Public registration is for citizens only. Admin accounts must be created by an administrator.")
    loop = asyncio.get_event_loop()
    existing = await loop.run_in_executor(executor, db.users.find_one, {"email": user_data.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user_doc = build_user_doc(user_data)
    await loop.run_in_executor(executor, db.users.insert_one, user_doc)
    logger.info("Registered citizen %s", user_data.email)
    token = create_access_token({"sub": user_doc["email"], "role": user_doc["role"]})
    return TokenResponse(access_token=token, user=user_to_response(user_doc))

@app.post("/auth/login", response_model=TokenResponse)
@limiter.limit("5/minute")
async def login(request: Request, form: UserLogin, db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {"email": form.email})
    if not user or not verify_password(form.password, user["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token({"sub": user["email"], "role": user["role"]})
    return TokenResponse(access_token=token, user=user_to_response(user))

@app.get("/auth/me", response_model=UserResponse)
async def get_me(user=Depends(get_current_user)):
    return user_to_response(user)

@app.put("/auth/me", response_model=UserResponse)
async def update_me(update: ProfileUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    if user["email"] == BUILTIN_ADMIN_EMAIL:
        raise HTTPException(status_code=403, detail="Cannot update admin profile")
    set_fields = update.model_dump(exclude_none=True)
    if "name" in set_fields:
        set_fields["name"] = set_fields["name"].strip()
        if not set_fields["name"]:
            raise HTTPException(status_code=400, detail="Name cannot be empty")
    if not set_fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    set_fields["updated_at"] = now_utc()
    loop = asyncio.get_event_loop()
    updated = await loop.run_in_executor(executor, lambda: db.users.find_one_and_update(
        {"_id": user["_id"]}, {"$set": set_fields}, return_document=ReturnDocument.AFTER))
    return user_to_response(updated)

@app.post("/auth/me/photo", response_model=UserResponse)
async def upload_profile_photo(photo: UploadFile = File(...), user=Depends(get_current_user),
                               db=Depends(get_db), fs=Depends(get_fs)):
    if user["email"] == BUILTIN_ADMIN_EMAIL:
        raise HTTPException(status_code=403, detail="Cannot update admin profile")
    data = await read_image(photo, MAX_PROFILE_IMAGE_BYTES, "Image size should be less than 2MB")
    try:
        file_id = await store_image(fs, data, f"profile-images/{user['_id']}", photo.content_type,
                                    {"kind": "profile", "owner": user["email"]})
    except (asyncio.TimeoutError, gridfs.errors.GridFSError, PyMongoError) as e:
        logger.error("Profile photo upload failed for %s: %s", user["email"], e)
        raise HTTPException(status_code=502, detail="Profile photo upload failed. Please try again.")
    loop = asyncio.get_event_loop()
    updated = await loop.run_in_executor(executor, lambda: db.users.find_one_and_update(
        {"_id": user["_id"]},
        {"$set": {"profile_image_id": file_id, "profile_image_url": f"/files/{file_id}",
                  "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER))
    await loop.run_in_executor(executor, discard_file, fs, user.get("profile_image_id"))
    return user_to_response(updated)

@app.delete("/auth/me")
async def delete_me(token: Optional[str] = Depends(oauth2_scheme), user=Depends(get_current_user),
                    db=Depends(get_db), fs=Depends(get_fs)):
    if user["email"] == BUILTIN_ADMIN_EMAIL:
        raise HTTPException(status_code=403, detail="Cannot delete admin account")
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, db.users.delete_one, {"_id": user["_id"]})
    await loop.run_in_executor(executor, db.notifications.delete_many, {"user_email": user["email"]})
    await loop.run_in_executor(executor, discard_file, fs, user.get("profile_image_id"))
    if token:
        _token_blacklist.add(token)
    logger.info("Account deleted: %s", user["email"])
    return {"detail": "Account deleted"}

@app.post("/auth/logout")
async def logout(token: Optional[str] = Depends(oauth2_scheme)):
    if token:
        _token_blacklist.add(token)
        # Prune blacklist if it grows too large (expired tokens don't matter)
        if len(_token_blacklist) > 10000:
            _token_blacklist.clear()
    return {"detail": "Logged out successfully"}

@app.get("/auth/me/notification-preference", response_model=NotificationPreference)
async def get_notification_preference(user=Depends(get_current_user)):
    return NotificationPreference(enabled=user.get("notifications_enabled", False))

@app.put("/auth/me/notification-preference", response_model=NotificationPreference)
async def set_notification_preference(pref: NotificationPreference, user=Depends(get_current_user),
                                      db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.users.update_one(
        {"_id": user["_id"]}, {"$set": {"notifications_enabled": pref.enabled, "updated_at": now_utc()}}))
    return pref

# ---------------------------------------------------------------------------
# ADMIN USER MANAGEMENT ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/admin/users", response_model=List[UserResponse])
async def admin_list_users(role: Optional[str] = None,
                           user=Depends(require_role(UserRole.ADMIN.value)),
                           db=Depends(get_db)):
    query = {}
    if role and role in [r.value for r in UserRole]:
        query["role"] = role
    loop = asyncio.get_event_loop()
    users = await loop.run_in_executor(executor, lambda: list(db.users.find(query).sort("created_at", -1)))
    return [user_to_response(u) for u in users]

@app.post("/admin/users", response_model=UserResponse)
async def admin_create_user(user_data: UserCreate,
                            user=Depends(require_role(UserRole.ADMIN.value)),
                            db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    existing = await loop.run_in_executor(executor, db.users.find_one, {"email": user_data.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user_doc = build_user_doc(user_data)
    await loop.run_in_executor(executor, db.users.insert_one, user_doc)
    logger.info("Admin %s created user %s (%s)", user["email"], user_data.email, user_data.role.value)
    return user_to_response(user_doc)

@app.put("/admin/users/{user_id}", response_model=UserResponse)
async def admin_update_user(user_id: str, update: UserUpdate,
                            user=Depends(require_role(UserRole.ADMIN.value)),
                            db=Depends(get_db)):
    user_id = validate_uuid(user_id, "user_id")
    loop = asyncio.get_event_loop()
    target = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target["email"] == BUILTIN_ADMIN_EMAIL:
        raise HTTPException(status_code=403, detail="Cannot update admin profile")
    if update.role is not None and user_id == str(user["_id"]) and update.role.value != target["role"]:
        raise HTTPException(status_code=403, detail="You cannot change your own role")
    set_fields: Dict[str, Any] = {}
    if update.name is not None:
        set_fields["name"] = update.name
    if update.email is not None and update.email != target["email"]:
        clash = await loop.run_in_executor(executor, db.users.find_one, {"email": update.email})
        if clash:
            raise HTTPException(status_code=400, detail="Email already registered")
        set_fields["email"] = update.email
    if update.phone is not None:
        set_fields["phone"] = update.phone
    if update.role is not None:
        set_fields["role"] = update.role.value
    if update.password is not None:
        set_fields["hashed_password"] = hash_password(update.password)
    if not set_fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    set_fields["updated_at"] = now_utc()
    def apply():
        doc = db.users.find_one_and_update(
            {"_id": user_id}, {"$set": set_fields}, return_document=ReturnDocument.AFTER)
        # Reports and notifications are keyed by email; follow the rename
        if "email" in set_fields:
            db.issues.update_many({"reported_by": target["email"]},
                                  {"$set": {"reported_by": set_fields["email"]}})
            db.notifications.update_many({"user_email": target["email"]},
                                         {"$set": {"user_email": set_fields["email"]}})
        return doc
    updated = await loop.run_in_executor(executor, apply)
    logger.info("Admin %s updated user %s", user["email"], target["email"])
    return user_to_response(updated)

@app.delete("/admin/users/{user_id}")
async def admin_delete_user(user_id: str,
                            user=Depends(require_role(UserRole.ADMIN.value)),
                            db=Depends(get_db), fs=Depends(get_fs)):
    user_id = validate_uuid(user_id, "user_id")
    if str(user["_id"]) == user_id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    loop = asyncio.get_event_loop()
    target = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target["email"] == BUILTIN_ADMIN_EMAIL:
        raise HTTPException(status_code=403, detail="Cannot delete admin account")
    await loop.run_in_executor(executor, db.users.delete_one, {"_id": user_id})
    await loop.run_in_executor(executor, db.notifications.delete_many, {"user_email": target["email"]})
    await loop.run_in_executor(executor, discard_file, fs, target.get("profile_image_id"))
    logger.info("Admin %s deleted user %s", user["email"], target["email"])
    return {"detail": f"User '{target['email']}' deleted"}

@app.get("/admin/overview", response_model=OverviewResponse)
async def admin_overview(user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    def fetch():
        return OverviewResponse(
            total_issues=db.issues.count_documents({}),
            active_users=len(db.issues.distinct("reported_by")),
            new_reports=db.issues.count_documents({"status": IssueStatus.REPORTED.value}),
            in_progress=db.issues.count_documents({"status": IssueStatus.IN_PROGRESS.value}),
            unassigned=db.issues.count_documents({"$or": [{"assigned_to": None}, {"assigned_to": ""}]}),
            resolved=db.issues.count_documents({"status": IssueStatus.RESOLVED.value}))
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@app.get("/admin/citizens/lookup", response_model=CitizenSummaryResponse)
async def admin_citizen_lookup(email: str = Query("", max_length=320),
                               user=Depends(require_role(UserRole.ADMIN.value)),
                               db=Depends(get_db)):
    email = sanitize_str(email).strip()
    if not email:
        raise HTTPException(status_code=400, detail="Please enter an email address")
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Please enter a valid email address")
    def fetch():
        issues = list(db.issues.find(reporter_query(email)).sort("reported_at", -1))
        profile = db.users.find_one({"email": email.lower()}) if issues else None
        return issues, profile
    loop = asyncio.get_event_loop()
    issues, profile = await loop.run_in_executor(executor, fetch)
    if not issues:
        raise HTTPException(status_code=404, detail="No reports found for this email address")
    resolved = sum(1 for g in issues if g["status"] == IssueStatus.RESOLVED.value)
    return CitizenSummaryResponse(
        email=email,
        name=profile["name"] if profile else "User",
        phone=(profile.get("phone") if profile else None) or "Not available",
        address=(issues[0].get("location") or {}).get("address") or "Not available",
        total_reports=len(issues),
        active_reports=len(issues) - resolved,
        resolved_reports=resolved,
        last_activity=max(as_utc(g["reported_at"]) for g in issues),
        issues=[issue_to_response(g) for g in issues])

# ---------------------------------------------------------------------------
# ISSUE ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/issues", response_model=IssueResponse)
@limiter.limit("10/minute")
async def create_issue(request: Request,
                       title: str = Form(""), description: str = Form(""),
                       category: str = Form(""), address: str = Form(""),
                       lat: Optional[float] = Form(None), lng: Optional[float] = Form(None),
                       audio_description: Optional[str] = Form(None),
                       submit_without_image: bool = Form(False),
                       image: Optional[UploadFile] = File(None),
                       user=Depends(get_current_user), db=Depends(get_db), fs=Depends(get_fs)):
    title, description, address, category = title.strip(), description.strip(), address.strip(), category.strip()
    if not title or not description or not category or not address:
        raise HTTPException(status_code=400, detail="Please fill in all required fields")
    if category not in CATEGORY_VALUES:
        raise HTTPException(status_code=400, detail="Invalid category")
    if len(title) > 200 or len(description) > 5000 or len(address) > 500:
        raise HTTPException(status_code=400, detail="Title, description or address is too long")
    lat = lat if lat is not None else 0.0
    lng = lng if lng is not None else 0.0
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise HTTPException(status_code=400, detail="Invalid coordinates")

    image_data = None
    if image is not None and image.filename:
        image_data = await read_image(image, MAX_ISSUE_IMAGE_BYTES, "Image size should be less than 5MB")

    image_id, upload_failed = None, False
    if image_data:
        try:
            image_id = await store_image(
                fs, image_data, f"issue-images/{int(time.time() * 1000)}_{image.filename}",
                image.content_type, {"kind": "issue", "uploaded_by": user["email"]})
        except (asyncio.TimeoutError, gridfs.errors.GridFSError, PyMongoError) as e:
            logger.error("Image upload failed for %s: %s", user["email"], e)
            if not submit_without_image:
                raise HTTPException(status_code=502, detail="Image upload failed. Would you like to submit the report without the image?")
            upload_failed = True

    now = now_utc()
    doc = {
        "_id": str(uuid.uuid4()), "title": title, "description": description,
        "category": category, "status": IssueStatus.REPORTED.value,
        "location": {"address": address, "lat": lat, "lng": lng},
        "image_id": image_id, "image_url": f"/files/{image_id}" if image_id else None,
        "image_upload_failed": upload_failed,
        "audio_description": audio_description or None,
        "reported_by": user["email"], "reported_at": now,
        "assigned_to": None, "assigned_vendor_id": None, "status_history": [],
        "created_at": now, "updated_at": now,
    }
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, db.issues.insert_one, doc)
    logger.info("Issue %s reported by %s (%s)", doc["_id"], user["email"], category)
    return issue_to_response(doc)

def issue_list_query(user: dict, search: str, status: str, category: str, assignee: str,
                     updated_since: Optional[datetime] = None) -> dict:
    # Citizens only ever see their own reports
    try:
        return build_issue_query(
            search=sanitize_str(search), status=status, category=category, assignee=assignee,
            reported_by=None if is_admin(user) else user["email"], updated_since=updated_since)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.get("/issues", response_model=List[IssueResponse])
async def get_issues(search: str = Query("", max_length=200), status: str = Query(ALL),
                     category: str = Query(ALL), assignee: str = Query(ALL, max_length=200),
                     updated_since: Optional[datetime] = None,
                     limit: int = Query(100, ge=1, le=500), skip: int = Query(0, ge=0, le=10000),
                     user=Depends(get_current_user), db=Depends(get_db)):
    fq = issue_list_query(user, search, status, category, assignee, updated_since)
    def fetch():
        return list(db.issues.find(fq).sort("reported_at", -1).skip(skip).limit(limit))
    loop = asyncio.get_event_loop()
    issues = await loop.run_in_executor(executor, fetch)
    return [issue_to_response(g) for g in issues]

@app.get("/issues/facets", response_model=FacetsResponse)
async def get_issue_facets(user=Depends(get_current_user), db=Depends(get_db)):
    fq = {} if is_admin(user) else {"reported_by": user["email"]}
    loop = asyncio.get_event_loop()
    docs = await loop.run_in_executor(
        executor, lambda: list(db.issues.find(fq, {"category": 1, "assigned_to": 1})))
    return FacetsResponse(**collect_facets(docs))

@app.get("/issues/map", response_model=MapResponse)
async def get_issue_map(search: str = Query("", max_length=200), status: str = Query(ALL),
                        category: str = Query(ALL), assignee: str = Query(ALL, max_length=200),
                        user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    fq = issue_list_query(user, search, status, category, assignee)
    loop = asyncio.get_event_loop()
    issues = await loop.run_in_executor(executor, lambda: list(db.issues.find(fq).sort("reported_at", -1)))
    markers = [MapMarker(id=g["_id"], title=g["title"], category=g["category"], status=g["status"],
                         lat=g["location"]["lat"], lng=g["location"]["lng"],
                         address=g["location"].get("address", ""))
               for g in issues if has_coordinates(g.get("location"))]
    return MapResponse(center=MAP_CENTER, markers=markers, hidden_count=len(issues) - len(markers))

@app.get("/issues/{issue_id}", response_model=IssueResponse)
async def get_issue(issue_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    issue_id = validate_uuid(issue_id, "issue_id")
    g = await fetch_issue(db, issue_id)
    if not is_admin(user) and g["reported_by"] != user["email"]:
        raise HTTPException(status_code=403, detail="Access denied")
    return issue_to_response(g)

@app.put("/issues/{issue_id}", response_model=IssueResponse)
async def update_issue(issue_id: str, update: IssueUpdate,
                       user=Depends(get_current_user), db=Depends(get_db)):
    issue_id = validate_uuid(issue_id, "issue_id")
    g = await fetch_issue(db, issue_id)
    fields = update.model_dump(mode="json", exclude_none=True)
    if not is_admin(user):
        if g["reported_by"] != user["email"]:
            raise HTTPException(status_code=403, detail="You can only edit your own reports")
        if "status" in fields:
            raise HTTPException(status_code=403, detail="Only administrators can change the status")
        if g["status"] not in CITIZEN_EDITABLE_STATUSES:
            raise HTTPException(status_code=400, detail="This report can no longer be edited")
    for key in ("title", "description"):
        if key in fields:
            fields[key] = fields[key].strip()
            if not fields[key]:
                raise HTTPException(status_code=400, detail="Please fill in all required fields")
    if "location" in fields and not fields["location"]["address"].strip():
        raise HTTPException(status_code=400, detail="Please fill in all required fields")
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    new_status = fields.pop("status", None)
    loop = asyncio.get_event_loop()
    if fields:
        fields["updated_at"] = now_utc()
        await loop.run_in_executor(executor, lambda: db.issues.update_one({"_id": issue_id}, {"$set": fields}))
    if new_status and new_status != g["status"]:
        updated = await loop.run_in_executor(
            executor, record_status_change, db, issue_id, new_status, user["email"])
        await loop.run_in_executor(executor, notify_status_change, db, updated, new_status)
    return issue_to_response(await fetch_issue(db, issue_id))

@app.put("/issues/{issue_id}/status", response_model=IssueResponse)
async def update_issue_status(issue_id: str, new_status: IssueStatus,
                              user=Depends(require_role(UserRole.ADMIN.value)),
                              db=Depends(get_db)):
    issue_id = validate_uuid(issue_id, "issue_id")
    g = await fetch_issue(db, issue_id)
    if g["status"] == new_status.value:
        return issue_to_response(g)
    loop = asyncio.get_event_loop()
    updated = await loop.run_in_executor(
        executor, record_status_change, db, issue_id, new_status.value, user["email"])
    await loop.run_in_executor(executor, notify_status_change, db, updated, new_status.value)
    logger.info("Admin %s moved issue %s to %s", user["email"], issue_id, new_status.value)
    return issue_to_response(updated)

@app.put("/issues/{issue_id}/assign", response_model=IssueResponse)
async def assign_issue(issue_id: str, assignment: IssueAssignment,
                       user=Depends(require_role(UserRole.ADMIN.value)),
                       db=Depends(get_db)):
    issue_id = validate_uuid(issue_id, "issue_id")
    assignee = assignment.assignee.strip()
    if not assignee:
        raise HTTPException(status_code=400, detail="Assignee cannot be empty")
    def update():
        return db.issues.find_one_and_update(
            {"_id": issue_id},
            {"$set": {"assigned_to": assignee, "assigned_vendor_id": None, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER)
    loop = asyncio.get_event_loop()
    updated = await loop.run_in_executor(executor, update)
    if updated is None:
        raise HTTPException(status_code=404, detail="Issue not found")
    return issue_to_response(updated)

@app.put("/issues/{issue_id}/assign-vendor", response_model=IssueResponse)
async def assign_vendor(issue_id: str, assignment: VendorAssignment,
                        user=Depends(require_role(UserRole.ADMIN.value)),
                        db=Depends(get_db)):
    issue_id = validate_uuid(issue_id, "issue_id")
    vendor_id = validate_uuid(assignment.vendor_id, "vendor_id")
    g = await fetch_issue(db, issue_id)
    loop = asyncio.get_event_loop()
    vendor = await loop.run_in_executor(executor, db.vendors.find_one, {"_id": vendor_id})
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    extra = {"assigned_to": vendor["name"], "assigned_vendor_id": vendor_id}
    if g["status"] == IssueStatus.IN_PROGRESS.value:
        updated = await loop.run_in_executor(executor, lambda: db.issues.find_one_and_update(
            {"_id": issue_id}, {"$set": {**extra, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER))
    else:
        updated = await loop.run_in_executor(
            executor, record_status_change, db, issue_id, IssueStatus.IN_PROGRESS.value, user["email"], extra)
        await loop.run_in_executor(executor, notify_status_change, db, updated, IssueStatus.IN_PROGRESS.value)
    logger.info("Admin %s assigned vendor %s to issue %s", user["email"], vendor["name"], issue_id)
    return issue_to_response(updated)

@app.get("/issues/{issue_id}/vendors", response_model=List[VendorResponse])
async def get_matching_vendors(issue_id: str, user=Depends(require_role(UserRole.ADMIN.value)),
                               db=Depends(get_db)):
    issue_id = validate_uuid(issue_id, "issue_id")
    g = await fetch_issue(db, issue_id)
    loop = asyncio.get_event_loop()
    vendors = await loop.run_in_executor(executor, lambda: list(db.vendors.find({}).sort("created_at", -1)))
    return [vendor_to_response(v) for v in match_vendors(vendors, g.get("category"))]

@app.delete("/issues/{issue_id}")
async def delete_issue(issue_id: str, user=Depends(get_current_user),
                       db=Depends(get_db), fs=Depends(get_fs)):
    issue_id = validate_uuid(issue_id, "issue_id")
    g = await fetch_issue(db, issue_id)
    if not is_admin(user):
        if g["reported_by"] != user["email"]:
            raise HTTPException(status_code=403, detail="Access denied")
        if g["status"] != IssueStatus.REPORTED.value:
            raise HTTPException(status_code=400, detail="Only reports that have not been acknowledged can be withdrawn")
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, db.issues.delete_one, {"_id": issue_id})
    await loop.run_in_executor(executor, db.notifications.delete_many, {"issue_id": issue_id})
    await loop.run_in_executor(executor, discard_file, fs, g.get("image_id"))
    logger.info("Issue %s deleted by %s", issue_id, user["email"])
    return {"detail": "Issue deleted"}

# ---------------------------------------------------------------------------
# VENDOR ENDPOINTS
# ---------------------------------------------------------------------------
def vendor_fields(entry: VendorEntry) -> dict:
    if (not entry.name.strip() or not entry.email.strip() or not entry.phone.strip()
            or entry.base_quote is None or str(entry.base_quote).strip() == ""):
        raise HTTPException(status_code=400, detail="Please fill in all required fields including pricing")
    try:
        base_quote = float(entry.base_quote)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Please enter a valid base quote amount")
    if math.isnan(base_quote) or math.isinf(base_quote) or base_quote <= 0:
        raise HTTPException(status_code=400, detail="Please enter a valid base quote amount")
    return {
        "name": entry.name.strip(), "email": entry.email.strip().lower(),
        "phone": entry.phone.strip(), "specialities": entry.specialities,
        "location": entry.location.strip(), "description": entry.description.strip(),
        "base_quote": base_quote,
    }

@app.get("/vendors", response_model=List[VendorResponse])
async def list_vendors(category: Optional[IssueCategory] = None,
                       user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    vendors = await loop.run_in_executor(executor, lambda: list(db.vendors.find({}).sort("created_at", -1)))
    if category:
        vendors = match_vendors(vendors, category.value)
    return [vendor_to_response(v) for v in vendors]

@app.post("/vendors", response_model=VendorResponse)
async def add_vendor(entry: VendorEntry, user=Depends(require_role(UserRole.ADMIN.value)),
                     db=Depends(get_db)):
    now = now_utc()
    doc = {"_id": str(uuid.uuid4()), **vendor_fields(entry),
           "rating": 0, "total_jobs": 0, "verified": False,
           "created_at": now, "updated_at": now}
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, db.vendors.insert_one, doc)
    logger.info("Admin %s added vendor %s", user["email"], doc["name"])
    return vendor_to_response(doc)

@app.get("/vendors/{vendor_id}", response_model=VendorResponse)
async def get_vendor(vendor_id: str, user=Depends(require_role(UserRole.ADMIN.value)),
                     db=Depends(get_db)):
    vendor_id = validate_uuid(vendor_id, "vendor_id")
    loop = asyncio.get_event_loop()
    vendor = await loop.run_in_executor(executor, db.vendors.find_one, {"_id": vendor_id})
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor_to_response(vendor)

@app.put("/vendors/{vendor_id}", response_model=VendorResponse)
async def update_vendor(vendor_id: str, entry: VendorEntry,
                        user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    vendor_id = validate_uuid(vendor_id, "vendor_id")
    fields = vendor_fields(entry)
    fields["updated_at"] = now_utc()
    loop = asyncio.get_event_loop()
    updated = await loop.run_in_executor(executor, lambda: db.vendors.find_one_and_update(
        {"_id": vendor_id}, {"$set": fields}, return_document=ReturnDocument.AFTER))
    if updated is None:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor_to_response(updated)

@app.put("/vendors/{vendor_id}/verify", response_model=VendorResponse)
async def verify_vendor(vendor_id: str, verified: bool = True,
                        user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    vendor_id = validate_uuid(vendor_id, "vendor_id")
    loop = asyncio.get_event_loop()
    updated = await loop.run_in_executor(executor, lambda: db.vendors.find_one_and_update(
        {"_id": vendor_id}, {"$set": {"verified": verified, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER))
    if updated is None:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor_to_response(updated)

@app.delete("/vendors/{vendor_id}")
async def delete_vendor(vendor_id: str, user=Depends(require_role(UserRole.ADMIN.value)),
                        db=Depends(get_db)):
    vendor_id = validate_uuid(vendor_id, "vendor_id")
    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(executor, db.vendors.delete_one, {"_id": vendor_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return {"detail": "Vendor deleted"}

# ---------------------------------------------------------------------------
# NOTIFICATIONS & LOCATION
# ---------------------------------------------------------------------------
@app.get("/notifications", response_model=List[NotificationResponse])
async def list_notifications(unread_only: bool = False, limit: int = Query(50, ge=1, le=200),
                             user=Depends(get_current_user), db=Depends(get_db)):
    fq: Dict[str, Any] = {"user_email": user["email"]}
    if unread_only:
        fq["read"] = False
    loop = asyncio.get_event_loop()
    docs = await loop.run_in_executor(
        executor, lambda: list(db.notifications.find(fq).sort("created_at", -1).limit(limit)))
    return [NotificationResponse(**n, id=n["_id"]) for n in docs]

@app.put("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(notification_id: str, user=Depends(get_current_user),
                                 db=Depends(get_db)):
    notification_id = validate_uuid(notification_id, "notification_id")
    loop = asyncio.get_event_loop()
    updated = await loop.run_in_executor(executor, lambda: db.notifications.find_one_and_update(
        {"_id": notification_id, "user_email": user["email"]}, {"$set": {"read": True}},
        return_document=ReturnDocument.AFTER))
    if updated is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return NotificationResponse(**updated, id=updated["_id"])

@app.get("/location/reverse", response_model=LocationResult)
async def reverse_location(lat: Optional[float] = None, lng: Optional[float] = None,
                           user=Depends(get_current_user)):
    return reverse_geocode(lat, lng)

# ---------------------------------------------------------------------------
# FILES (GridFS)
# ---------------------------------------------------------------------------
@app.get("/files/{file_id}")
async def get_file(file_id: str, fs=Depends(get_fs)):
    try:
        oid = ObjectId(sanitize_str(file_id))
    except InvalidId:
        raise HTTPException(status_code=400, detail="Invalid file id")
    def fetch():
        grid_out = fs.get(oid)
        return grid_out.read(), (grid_out.metadata or {}).get("content_type")
    loop = asyncio.get_event_loop()
    try:
        data, content_type = await loop.run_in_executor(executor, fetch)
    except gridfs.errors.NoFile:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(content=data, media_type=content_type or "application/octet-stream",
                    headers={"Cache-Control": "public, max-age=86400"})

# ---------------------------------------------------------------------------
# ANALYTICS
# ---------------------------------------------------------------------------
def compute_analytics(issues: List[dict], now: Optional[datetime] = None) -> AnalyticsResponse:
    now = now or now_utc()
    status_counts = {s.value: 0 for s in IssueStatus}
    categories: Dict[str, int] = {}
    response_hours: List[float] = []
    reported_by_day: Dict[Any, int] = {}
    resolved_by_day: Dict[Any, int] = {}
    for g in issues:
        status_counts[g["status"]] = status_counts.get(g["status"], 0) + 1
        cat = g.get("category") or IssueCategory.OTHER.value
        categories[cat] = categories.get(cat, 0) + 1
        reported_at = as_utc(g["reported_at"]) if g.get("reported_at") else None
        if reported_at:
            reported_by_day[reported_at.date()] = reported_by_day.get(reported_at.date(), 0) + 1
        history = g.get("status_history") or []
        if history and reported_at:
            # Response time: reported until an admin first touched the status
            first_change = as_utc(history[0]["changed_at"])
            response_hours.append(max((first_change - reported_at).total_seconds(), 0) / 3600)
        for h in history:
            if h["status"] == IssueStatus.RESOLVED.value:
                day = as_utc(h["changed_at"]).date()
                resolved_by_day[day] = resolved_by_day.get(day, 0) + 1

    trend = []
    for offset in range(6, -1, -1):
        day = (now - timedelta(days=offset)).date()
        trend.append({"day": day.strftime("%a"), "date": day.isoformat(),
                      "reported": reported_by_day.get(day, 0),
                      "resolved": resolved_by_day.get(day, 0)})

    total = len(issues)
    resolved = status_counts[IssueStatus.RESOLVED.value]
    return AnalyticsResponse(
        total_issues=total,
        reported=status_counts[IssueStatus.REPORTED.value],
        acknowledged=status_counts[IssueStatus.ACKNOWLEDGED.value],
        in_progress=status_counts[IssueStatus.IN_PROGRESS.value],
        resolved=resolved,
        resolution_rate=round(resolved / total * 100, 1) if total else 0.0,
        avg_response_time_hours=round(mean(response_hours), 1) if response_hours else None,
        category_breakdown=categories,
        status_distribution=status_counts,
        trend=trend)

@app.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(days: Optional[int] = Query(None, ge=1, le=365),
                        user=Depends(require_role(UserRole.ADMIN.value)),
                        db=Depends(get_db)):
    now = now_utc()
    fq = {"reported_at": {"$gte": to_naive_utc(now - timedelta(days=days))}} if days else {}
    def fetch():
        return list(db.issues.find(fq, {"status": 1, "category": 1, "reported_at": 1, "status_history": 1}))
    loop = asyncio.get_event_loop()
    issues = await loop.run_in_executor(executor, fetch)
    return compute_analytics(issues, now)

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/health")
async def health(db=Depends(get_db)):
    database = "disconnected"
    if db is not None:
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(executor, lambda: db.command("ping"))
            database = "connected"
        except Exception as e:
            database = f"error: {str(e)[:80]}"
    return {"status": "healthy", "system": "Vikasit Jharkhand Civic Issue Portal",
            "database": database, "timestamp": now_utc()}

# ---------------------------------------------------------------------------
# PAGE ROUTES (serve Jinja2 templates)
# ---------------------------------------------------------------------------
PAGES = [
    ("", "login.html"), ("login", "login.html"), ("register", "register.html"),
    ("citizen", "citizen.html"), ("admin", "admin.html"),
]

for _path, _template in PAGES:
    def _make_handler(tmpl: str):
        async def handler(request: Request):
            response = templates.TemplateResponse(request, tmpl, {"categories": CATEGORY_VALUES})
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            return response
        return handler
    app.add_api_route(f"/{_path}" if _path else "/", _make_handler(_template),
                      methods=["GET"], response_class=HTMLResponse, include_in_schema=False)

def main():
    uvicorn.run(app, host="0.0.0.0", port=8000)

if __name__ == "__main__":
    main()
