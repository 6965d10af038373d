"""
Database Schemas for Mangrove Watch

Each Pydantic model represents a MongoDB collection or an API payload.
Collection names: "user" (auth accounts), "profiles", "reports".
Documents are keyed by the string id of the model (Profile.id -> _id).
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal['community', 'authority']
ReportStatus = Literal['pending', 'verified', 'rejected', 'resolved']

REPORT_STATUSES = ('pending', 'verified', 'rejected', 'resolved')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Auth ----------

class Identity(BaseModel):
    id: str = Field(..., description="Opaque user id issued by the auth service")
    email: EmailStr = Field(..., description="Email address")
    user_metadata: Dict[str, Any] = Field(default_factory=dict, description="Metadata supplied at signup")


class Session(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    expires_at: datetime
    user: Identity


# ---------- Core collections ----------

class Profile(BaseModel):
    """
    Application-level user record
    Collection: profiles
    """
    id: str = Field(..., description="Same id as the auth identity")
    full_name: Optional[str] = Field(None, description="Display name")
    role: Role = Field('community', description="Role of the account")
    points: int = Field(0, ge=0, description="Leaderboard points")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReporterName(BaseModel):
    full_name: Optional[str] = None


class Report(BaseModel):
    """
    Incident report submitted by a community member
    Collection: reports
    """
    id: str = Field(..., description="Report id")
    title: str = Field(..., min_length=1, description="Short title")
    description: str = Field(..., min_length=1, description="What happened")
    photo_url: Optional[str] = Field(None, description="Public URL of the incident photo")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    status: ReportStatus = Field('pending')
    user_id: str = Field(..., description="Owner identity id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    user_profile: Optional[ReporterName] = Field(None, description="Reporter display name, when joined")


class Stats(BaseModel):
    total_reports: int = 0
    pending_reports: int = 0
    verified_reports: int = 0
    resolved_reports: int = 0
    rejected_reports: int = 0
    total_users: int = 0


class Notice(BaseModel):
    """User-facing notification attached to a response"""
    title: str
    description: str
    variant: Literal['default', 'destructive'] = 'default'


# ---------- Requests ----------

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field('', description="Display name")
    role: Role = 'community'
    admin_secret_key: Optional[str] = None


class SigninRequest(BaseModel):
    email: EmailStr
    password: str


class RoleUpdate(BaseModel):
    role: Role
    admin_secret_key: Optional[str] = None


class ReportEdit(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class ReportStatusUpdate(BaseModel):
    status: ReportStatus


# ---------- Views ----------

class LeaderboardEntry(BaseModel):
    id: str
    full_name: str
    points: int
    verified_reports: int
    total_reports: int
    rank: int
    badge: str
