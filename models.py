from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from database import Base

ROLE_JOB_SEEKER = "job_seeker"
ROLE_EMPLOYER = "employer"

JOB_ACTIVE = "active"
JOB_CLOSED = "closed"

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"


def utcnow() -> datetime:
    # Client-side default keeps sub-second ordering on SQLite
    return datetime.now(timezone.utc)


class User(Base):
    """A completed profile, one per external identity."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    identity_id = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False)
    email = Column(String, nullable=False)
    name = Column(String, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    # job_seeker only
    skills = Column(Text, nullable=True)
    education = Column(Text, nullable=True)
    experience = Column(Text, nullable=True)
    resume_url = Column(String, nullable=True)

    # employer only
    company_name = Column(String, nullable=True)
    company_profile = Column(Text, nullable=True)
    company_website = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    salary = Column(String, nullable=False)
    location = Column(String, nullable=False, index=True)
    job_type = Column(String, nullable=False, default="full_time", index=True)
    category = Column(String, nullable=False, index=True)
    company_name = Column(String, nullable=False)
    company_website = Column(String, nullable=False)
    status = Column(String, nullable=False, default=JOB_ACTIVE)
    posted_by = Column(String, index=True, nullable=False)  # poster identity_id
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    applications = relationship("Application", back_populates="job", passive_deletes=True)


class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="SET NULL"), index=True, nullable=True)
    # Captured at submission so later listing edits don't rewrite history
    job_title = Column(String, nullable=False)
    company_name = Column(String, nullable=False)
    applicant_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    resume_url = Column(String, nullable=False)
    cover_letter = Column(Text, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    job = relationship("Job", back_populates="applications")


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(String, index=True, nullable=False)
    recipient_id = Column(String, index=True, nullable=False)
    job_id = Column(Integer, nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
