from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

import logic
import models
import schemas


# --- Profile CRUD ---
def get_profile(db: Session, identity_id: str) -> Optional[models.User]:
    """Look up the profile for an external identity. None means not completed yet."""
    return db.query(models.User).filter(models.User.identity_id == identity_id).first()


def create_profile(
    db: Session, identity: schemas.Identity, profile: schemas.ProfileCreate
) -> models.User:
    """Insert the single profile for this identity.

    Only the fields of the chosen role variant are stored; the other variant's
    columns stay NULL.
    """
    data = profile.model_dump()
    email = data.pop("email", None) or identity.email or ""
    db_user = models.User(identity_id=identity.sub, email=email, is_admin=False, **data)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def list_profiles(db: Session) -> List[models.User]:
    return db.query(models.User).order_by(models.User.created_at.desc()).all()


def get_profile_names(db: Session, identity_ids: Iterable[str]) -> Dict[str, str]:
    """Batch-resolve identity ids to display names in one query."""
    ids = list(set(identity_ids))
    if not ids:
        return {}
    rows = (
        db.query(models.User.identity_id, models.User.name)
        .filter(models.User.identity_id.in_(ids))
        .all()
    )
    return {identity_id: name for identity_id, name in rows}


def set_admin(db: Session, identity_id: str, is_admin: bool = True) -> Optional[models.User]:
    user = get_profile(db, identity_id)
    if not user:
        return None
    user.is_admin = is_admin
    db.commit()
    db.refresh(user)
    return user


# --- Job CRUD ---
def create_job(db: Session, job: schemas.JobCreate, poster_id: str) -> models.Job:
    db_job = models.Job(posted_by=poster_id, status=models.JOB_ACTIVE, **job.model_dump())
    db.add(db_job)
    db.commit()
    db.refresh(db_job)
    return db_job


def get_job(db: Session, job_id: int) -> Optional[models.Job]:
    return db.query(models.Job).filter(models.Job.id == job_id).first()


def list_jobs(db: Session, filters: schemas.JobFilters) -> List[models.Job]:
    """Server-side listing search, same semantics as ``logic.listing_matches``."""
    query = db.query(models.Job)

    q = filters.q.strip()
    if q:
        pattern = f"%{logic.escape_like(q)}%"
        query = query.filter(
            or_(
                models.Job.title.ilike(pattern, escape=logic.LIKE_ESCAPE),
                models.Job.description.ilike(pattern, escape=logic.LIKE_ESCAPE),
                models.Job.company_name.ilike(pattern, escape=logic.LIKE_ESCAPE),
            )
        )
    if filters.category:
        query = query.filter(models.Job.category == filters.category)
    if filters.job_type:
        query = query.filter(models.Job.job_type == filters.job_type)
    if filters.location:
        query = query.filter(models.Job.location == filters.location)
    if filters.status:
        query = query.filter(models.Job.status == filters.status)

    return query.order_by(models.Job.created_at.desc(), models.Job.id.desc()).all()


def get_jobs_for_poster(db: Session, poster_id: str) -> List[models.Job]:
    return (
        db.query(models.Job)
        .filter(models.Job.posted_by == poster_id)
        .order_by(models.Job.created_at.desc(), models.Job.id.desc())
        .all()
    )


def get_job_for_manager(db: Session, job_id: int, caller: models.User) -> Optional[models.Job]:
    """Fetch a job only if the caller posted it or is an admin."""
    query = db.query(models.Job).filter(models.Job.id == job_id)
    if not caller.is_admin:
        query = query.filter(models.Job.posted_by == caller.identity_id)
    return query.first()


def update_job(
    db: Session, job_id: int, caller: models.User, changes: schemas.JobUpdate
) -> Optional[models.Job]:
    db_job = get_job_for_manager(db, job_id, caller)
    if not db_job:
        return None  # Not found or not the caller's to edit

    for field, value in changes.model_dump(exclude_unset=True).items():
        setattr(db_job, field, value)
    db.commit()
    db.refresh(db_job)
    return db_job


def delete_job(db: Session, job_id: int, caller: models.User) -> bool:
    """Delete a job the caller manages. Its applications survive, detached."""
    db_job = get_job_for_manager(db, job_id, caller)
    if not db_job:
        return False

    db.query(models.Application).filter(models.Application.job_id == job_id).update(
        {models.Application.job_id: None}, synchronize_session=False
    )
    db.delete(db_job)
    db.commit()
    return True


# --- Application CRUD ---
def has_applied(db: Session, job_id: int, applicant_id: str) -> bool:
    return (
        db.query(models.Application.id)
        .filter(
            models.Application.job_id == job_id,
            models.Application.applicant_id == applicant_id,
        )
        .first()
        is not None
    )


def create_application(
    db: Session, job: models.Job, applicant_id: str, application: schemas.ApplicationCreate
) -> models.Application:
    db_application = models.Application(
        job_id=job.id,
        job_title=job.title,
        company_name=job.company_name,
        applicant_id=applicant_id,
        status=models.STATUS_PENDING,
        **application.model_dump(),
    )
    db.add(db_application)
    db.commit()
    db.refresh(db_application)
    return db_application


def get_applications_for_job(
    db: Session, job_id: int, caller: models.User
) -> Optional[List[models.Application]]:
    """Applications for a job the caller manages; None when the job isn't theirs."""
    if not get_job_for_manager(db, job_id, caller):
        return None
    return (
        db.query(models.Application)
        .filter(models.Application.job_id == job_id)
        .order_by(models.Application.created_at.asc(), models.Application.id.asc())
        .all()
    )


def get_applications_for_applicant(db: Session, applicant_id: str) -> List[models.Application]:
    return (
        db.query(models.Application)
        .filter(models.Application.applicant_id == applicant_id)
        .order_by(models.Application.created_at.desc(), models.Application.id.desc())
        .all()
    )


def get_application_for_reviewer(
    db: Session, application_id: int, reviewer_id: str
) -> Optional[models.Application]:
    """Fetch an application only if the reviewer posted the job it targets."""
    return (
        db.query(models.Application)
        .join(models.Job, models.Application.job_id == models.Job.id)
        .filter(
            models.Application.id == application_id,
            models.Job.posted_by == reviewer_id,
        )
        .first()
    )


def update_application_status(
    db: Session, application: models.Application, new_status: str
) -> bool:
    """Move a pending application to a terminal status.

    The UPDATE is conditional on the row still being pending, so a concurrent
    reviewer can't overwrite a decision that already landed. Returns False when
    no row changed.
    """
    logic.ensure_status_transition(application.status, new_status)
    updated = (
        db.query(models.Application)
        .filter(
            models.Application.id == application.id,
            models.Application.status == models.STATUS_PENDING,
        )
        .update(
            {
                models.Application.status: new_status,
                models.Application.updated_at: models.utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(application)
    return updated == 1


# --- Message CRUD ---
def _between(a: str, b: str):
    return or_(
        and_(models.Message.sender_id == a, models.Message.recipient_id == b),
        and_(models.Message.sender_id == b, models.Message.recipient_id == a),
    )


def get_conversation(db: Session, identity_id: str, counterpart_id: str) -> List[models.Message]:
    """Both directions of a conversation in one query, oldest first."""
    return (
        db.query(models.Message)
        .filter(_between(identity_id, counterpart_id))
        .order_by(models.Message.created_at.asc(), models.Message.id.asc())
        .all()
    )


def get_conversation_job_id(db: Session, identity_id: str, counterpart_id: str) -> Optional[int]:
    """Job context of a conversation: the job id on its latest message that has one."""
    row = (
        db.query(models.Message.job_id)
        .filter(_between(identity_id, counterpart_id), models.Message.job_id.isnot(None))
        .order_by(models.Message.created_at.desc(), models.Message.id.desc())
        .first()
    )
    return row[0] if row else None


def create_message(
    db: Session, sender_id: str, message: schemas.MessageCreate
) -> models.Message:
    job_id = message.job_id
    if job_id is None:
        job_id = get_conversation_job_id(db, sender_id, message.recipient_id)

    db_message = models.Message(
        sender_id=sender_id,
        recipient_id=message.recipient_id,
        job_id=job_id,
        content=message.content,
    )
    db.add(db_message)
    db.commit()
    db.refresh(db_message)
    return db_message


def get_messages_to(db: Session, recipient_id: str) -> List[models.Message]:
    return (
        db.query(models.Message)
        .filter(models.Message.recipient_id == recipient_id)
        .order_by(models.Message.created_at.desc(), models.Message.id.desc())
        .all()
    )


# --- Aggregates ---
def get_stats(db: Session) -> schemas.AdminStats:
    active_jobs = (
        db.query(func.count(models.Job.id)).filter(models.Job.status == models.JOB_ACTIVE).scalar()
    )
    total_users = db.query(func.count(models.User.id)).scalar()
    total_applications = db.query(func.count(models.Application.id)).scalar()
    return schemas.AdminStats(
        active_jobs=active_jobs or 0,
        total_users=total_users or 0,
        total_applications=total_applications or 0,
    )
