"""
Shared pytest fixtures for the Vikasit Jharkhand portal test suite.

Runs the app in-process through httpx.ASGITransport against an in-memory
MongoDB (mongomock) and an in-memory blob store, so no server is needed.
"""

import os
import time
import uuid

# Must be set before vikasit.config is imported
os.environ["JWT_SECRET"] = "test-secret-key-for-the-vikasit-portal-suite-0123456789"

import gridfs
import httpx
import mongomock
import pytest
import pytest_asyncio
from bson import ObjectId

from vikasit import portal
from vikasit.config import BUILTIN_ADMIN_EMAIL
from vikasit.portal import app, limiter


# ═══════════════════════════════════════════════════════════════════════════════
# BLOB STORES
# ═══════════════════════════════════════════════════════════════════════════════

class StoredFile:
    def __init__(self, data: bytes, filename: str, metadata: dict):
        self._data = data
        self.filename = filename
        self.metadata = metadata

    def read(self) -> bytes:
        return self._data


class MemoryBlobStore:
    """Dict-backed store with the GridFS put/get/delete surface the portal uses."""

    def __init__(self):
        self.files = {}

    def put(self, data, filename=None, metadata=None):
        oid = ObjectId()
        self.files[oid] = StoredFile(data, filename, metadata or {})
        return oid

    def get(self, oid):
        if oid not in self.files:
            raise gridfs.errors.NoFile(f"no file in gridfs with _id {oid!r}")
        return self.files[oid]

    def delete(self, oid):
        self.files.pop(oid, None)


class FailingBlobStore(MemoryBlobStore):
    def put(self, data, filename=None, metadata=None):
        raise gridfs.errors.GridFSError("storage offline")


class SlowBlobStore(MemoryBlobStore):
    def put(self, data, filename=None, metadata=None):
        time.sleep(0.5)
        return super().put(data, filename=filename, metadata=metadata)


# ═══════════════════════════════════════════════════════════════════════════════
# APP + STORAGE
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def database():
    return mongomock.MongoClient()["vikasit_test"]


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest_asyncio.fixture
async def client(database, blob_store):
    """In-process httpx AsyncClient bound to a fresh in-memory database."""
    # Disable rate limiting so registration/login fixtures aren't throttled
    limiter.enabled = False
    portal.ensure_indexes(database)
    portal.init_storage(database, blob_store)
    portal._token_blacklist.clear()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _login(client: httpx.AsyncClient, email: str, password: str) -> dict:
    """Log in and return Authorization headers dict."""
    resp = await client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"Login failed for {email}: {resp.text}"
    return _bearer(resp.json()["access_token"])


async def _register(client: httpx.AsyncClient, email: str, password: str = "citizen123",
                    name: str = "Test Citizen", phone: str = "9876543210") -> dict:
    resp = await client.post("/auth/register", json={
        "email": email, "password": password, "name": name, "phone": phone, "role": "citizen",
    })
    assert resp.status_code == 200, f"Register failed for {email}: {resp.text}"
    return _bearer(resp.json()["access_token"])


def _insert_admin(database, email: str, password: str = "admin123", name: str = "Administrator"):
    now = portal.now_utc()
    uid = str(uuid.uuid4())
    database.users.insert_one({
        "_id": uid, "email": email, "hashed_password": portal.hash_password(password),
        "name": name, "phone": "", "role": "admin", "profile_image_url": None,
        "notifications_enabled": False, "created_at": now, "updated_at": now,
    })
    return uid


@pytest_asyncio.fixture
async def citizen_headers(client):
    return await _register(client, "citizen1@example.com", name="Rajesh Kumar")


@pytest_asyncio.fixture
async def other_citizen_headers(client):
    return await _register(client, "citizen2@example.com", name="Anita Oraon")


@pytest_asyncio.fixture
async def admin_headers(client, database):
    """Auth headers for the built-in administrator."""
    _insert_admin(database, BUILTIN_ADMIN_EMAIL)
    return await _login(client, BUILTIN_ADMIN_EMAIL, "admin123")


@pytest_asyncio.fixture
async def second_admin_headers(client, database):
    _insert_admin(database, "officer.admin@vikasitjharkhand.gov.in", name="Second Admin")
    return await _login(client, "officer.admin@vikasitjharkhand.gov.in", "admin123")


# ═══════════════════════════════════════════════════════════════════════════════
# ISSUE HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def new_issue():
    """Factory: file an issue as the given user and return the JSON body."""
    async def _factory(client, headers, files=None, **overrides):
        form = {
            "title": "Pothole on Main Road",
            "description": "Deep pothole near the bus stop",
            "category": "Road/Sidewalk",
            "address": "Main Road, Ranchi",
            "lat": "23.3441",
            "lng": "85.3096",
        }
        form.update({k: str(v) for k, v in overrides.items()})
        resp = await client.post("/issues", data=form, files=files, headers=headers)
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _factory
