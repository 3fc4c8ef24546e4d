# Enums and pydantic models shared by the portal, filters and seed data

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class UserRole(str, Enum):
    CITIZEN = "citizen"
    ADMIN = "admin"

class IssueStatus(str, Enum):
    REPORTED = "reported"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"

class IssueCategory(str, Enum):
    ROAD_SIDEWALK = "Road/Sidewalk"
    STREET_LIGHTING = "Street Lighting"
    WASTE_MANAGEMENT = "Waste Management"
    VANDALISM = "Vandalism"
    PARKS_RECREATION = "Parks/Recreation"
    PUBLIC_SAFETY = "Public Safety"
    NOISE_COMPLAINT = "Noise Complaint"
    WATER_DRAINAGE = "Water/Drainage"
    OTHER = "Other"

# Citizens may still edit their report until work starts on it
CITIZEN_EDITABLE_STATUSES = {IssueStatus.REPORTED.value, IssueStatus.ACKNOWLEDGED.value}

def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v:
        raise ValueError("Please enter a valid email address")
    return v

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class UserCreate(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=6, max_length=72)
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field("", max_length=20)
    role: UserRole = UserRole.CITIZEN

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _normalize_email(v)

class UserLogin(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower()

class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=320)
    phone: Optional[str] = Field(None, max_length=20)
    role: Optional[UserRole] = None
    password: Optional[str] = Field(None, min_length=6, max_length=72)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _normalize_email(v) if v is not None else v

class ProfileUpdate(BaseModel):
    """Self-service profile edit. The role is fixed once selected."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    phone: Optional[str] = Field(None, max_length=20)

class UserResponse(BaseModel):
    uid: str
    name: str
    email: str
    phone: Optional[str] = None
    role: UserRole
    profile_image_url: Optional[str] = None
    notifications_enabled: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

class NotificationPreference(BaseModel):
    enabled: bool

# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------
class IssueLocation(BaseModel):
    address: str = Field("", max_length=500)
    lat: float = Field(0.0, ge=-90, le=90)
    lng: float = Field(0.0, ge=-180, le=180)

class IssueUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    category: Optional[IssueCategory] = None
    location: Optional[IssueLocation] = None
    status: Optional[IssueStatus] = None

class IssueAssignment(BaseModel):
    assignee: str = Field(..., min_length=1, max_length=200)

class VendorAssignment(BaseModel):
    vendor_id: str = Field(..., max_length=64)

class IssueResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    status: IssueStatus
    location: IssueLocation
    image_url: Optional[str] = None
    image_upload_failed: bool = False
    audio_description: Optional[str] = None
    reported_by: str
    reported_at: datetime
    assigned_to: Optional[str] = None
    assigned_vendor_id: Optional[str] = None
    status_history: List[Dict] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

class FacetsResponse(BaseModel):
    categories: List[str]
    assignees: List[str]

class MapMarker(BaseModel):
    id: str
    title: str
    category: str
    status: IssueStatus
    lat: float
    lng: float
    address: str

class MapResponse(BaseModel):
    center: Dict[str, float]
    markers: List[MapMarker]
    hidden_count: int = 0

# ---------------------------------------------------------------------------
# Vendors
# ---------------------------------------------------------------------------
class VendorEntry(BaseModel):
    """Vendor form payload; required-field rules are checked by the endpoint
    so the caller gets the same messages the admin form shows."""
    name: str = Field("", max_length=200)
    email: str = Field("", max_length=320)
    phone: str = Field("", max_length=20)
    specialities: List[str] = Field(default_factory=list)
    location: str = Field("", max_length=500)
    description: str = Field("", max_length=5000)
    base_quote: Optional[Union[float, str]] = None

    @field_validator("specialities", mode="before")
    @classmethod
    def split_specialities(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return [str(s).strip() for s in v if str(s).strip()]

class VendorResponse(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    specialities: List[str] = Field(default_factory=list)
    location: str = ""
    rating: float = 0
    total_jobs: int = 0
    base_quote: float
    description: str = ""
    verified: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

# ---------------------------------------------------------------------------
# Location & notifications
# ---------------------------------------------------------------------------
class LocationResult(BaseModel):
    address: str
    lat: float
    lng: float
    error: Optional[str] = None

class NotificationResponse(BaseModel):
    id: str
    issue_id: str
    title: str
    body: str
    tag: str
    status: str
    read: bool = False
    created_at: datetime

# ---------------------------------------------------------------------------
# Analytics & admin views
# ---------------------------------------------------------------------------
class AnalyticsResponse(BaseModel):
    total_issues: int
    reported: int
    acknowledged: int
    in_progress: int
    resolved: int
    resolution_rate: float
    avg_response_time_hours: Optional[float] = None
    category_breakdown: Dict[str, int]
    status_distribution: Dict[str, int]
    trend: List[Dict[str, Union[str, int]]]

class OverviewResponse(BaseModel):
    total_issues: int
    active_users: int
    new_reports: int
    in_progress: int
    unassigned: int
    resolved: int

class CitizenSummaryResponse(BaseModel):
    email: str
    name: str
    phone: str
    address: str
    total_reports: int
    active_reports: int
    resolved_reports: int
    last_activity: datetime
    issues: List[IssueResponse]
