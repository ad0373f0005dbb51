from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, StringConstraints, computed_field, field_validator

import models

# Required free text: surrounding whitespace stripped, must not be empty afterwards
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

ApplicationStatus = Literal["pending", "approved", "rejected"]
ReviewDecision = Literal["approved", "rejected"]
JobStatus = Literal["active", "closed"]


class Identity(BaseModel):
    """The authenticated principal as reported by the auth provider."""

    sub: str
    email: Optional[str] = None


# --- Profiles ---
class _ProfileCreateBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: NonEmptyStr
    # Falls back to the token's email claim when omitted
    email: Optional[NonEmptyStr] = None


class JobSeekerProfileCreate(_ProfileCreateBase):
    role: Literal["job_seeker"]
    skills: NonEmptyStr
    education: NonEmptyStr
    experience: NonEmptyStr
    resume_url: NonEmptyStr


class EmployerProfileCreate(_ProfileCreateBase):
    role: Literal["employer"]
    company_name: NonEmptyStr
    company_profile: NonEmptyStr
    company_website: NonEmptyStr


ProfileCreate = Annotated[
    Union[JobSeekerProfileCreate, EmployerProfileCreate], Field(discriminator="role")
]


class ProfileCompletion(RootModel[ProfileCreate]):
    """Request body for profile completion; the root is one role variant."""


class _ProfileBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    identity_id: str
    email: str
    name: str
    is_admin: bool = False
    created_at: Optional[datetime] = None


class JobSeekerProfile(_ProfileBase):
    role: Literal["job_seeker"]
    skills: str
    education: str
    experience: str
    resume_url: str


class EmployerProfile(_ProfileBase):
    role: Literal["employer"]
    company_name: str
    company_profile: str
    company_website: str


Profile = Union[JobSeekerProfile, EmployerProfile]


def profile_from_row(user: models.User) -> Profile:
    """Build the variant model matching the row's role."""
    if user.role == models.ROLE_EMPLOYER:
        return EmployerProfile.model_validate(user)
    return JobSeekerProfile.model_validate(user)


# --- Jobs ---
class JobCreate(BaseModel):
    title: NonEmptyStr
    description: NonEmptyStr
    salary: NonEmptyStr
    location: NonEmptyStr
    job_type: NonEmptyStr = "full_time"
    category: NonEmptyStr
    company_name: NonEmptyStr
    company_website: NonEmptyStr


class JobUpdate(BaseModel):
    """Partial listing edit; only the fields sent are changed."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[NonEmptyStr] = None
    description: Optional[NonEmptyStr] = None
    salary: Optional[NonEmptyStr] = None
    location: Optional[NonEmptyStr] = None
    job_type: Optional[NonEmptyStr] = None
    category: Optional[NonEmptyStr] = None
    company_name: Optional[NonEmptyStr] = None
    company_website: Optional[NonEmptyStr] = None
    status: Optional[JobStatus] = None

    @field_validator("*", mode="before")
    @classmethod
    def reject_explicit_null(cls, value):
        # Omit a field to leave it unchanged; null would clear a required column
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class Job(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    salary: str
    location: str
    job_type: str
    category: str
    company_name: str
    company_website: str
    status: JobStatus
    posted_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class JobFilters(BaseModel):
    q: str = ""
    category: str = ""
    job_type: str = ""
    location: str = ""
    status: Optional[JobStatus] = None


# --- Applications ---
class ApplicationCreate(BaseModel):
    name: NonEmptyStr
    email: NonEmptyStr
    resume_url: NonEmptyStr
    cover_letter: NonEmptyStr


class ApplicationStatusUpdate(BaseModel):
    status: ReviewDecision


class Application(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: Optional[int] = None
    job_title: str
    company_name: str
    applicant_id: str
    name: str
    email: str
    resume_url: str
    cover_letter: str
    status: ApplicationStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def can_review(self) -> bool:
        return self.status == models.STATUS_PENDING


# --- Messages ---
class MessageCreate(BaseModel):
    recipient_id: NonEmptyStr
    content: NonEmptyStr
    job_id: Optional[int] = None


class Message(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_id: str
    recipient_id: str
    job_id: Optional[int] = None
    content: str
    created_at: datetime


class Conversation(BaseModel):
    counterpart_id: str
    counterpart_name: str
    job_id: Optional[int] = None
    messages: List[Message]


class InboxEntry(BaseModel):
    sender_id: str
    sender_name: str
    message: Message


# --- Admin ---
class AdminStats(BaseModel):
    active_jobs: int
    total_users: int
    total_applications: int
