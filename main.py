import asyncio
import json
from typing import List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
import structlog
from structlog.contextvars import get_contextvars

import crud
import logic
import models
import schemas
from auth import (
    get_current_identity,
    require_admin,
    require_employer,
    require_job_seeker,
    require_profile,
    verify_token,
)
from database import create_db_and_tables, get_db
from observability import init_observability
from request_id_middleware import RequestIdMiddleware
from settings import Settings, get_settings


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)

# Create DB tables on startup
create_db_and_tables()

app = FastAPI(
    title="JobConnect",
    description="Backend API for the JobConnect job board: listings, applications and messaging",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)


# --- Error handling --- #
@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error", error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Error fetching data"},
    )


@app.exception_handler(logic.InvalidStatusTransition)
async def invalid_transition_handler(request: Request, exc: logic.InvalidStatusTransition):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


# --- SSE Connection Manager (Simple In-Memory) --- #
class ConnectionManager:
    def __init__(self):
        # Every open stream has its own queue; one identity may hold several
        self.active_connections: dict[str, set[asyncio.Queue]] = {}

    async def connect(self, identity_id: str) -> asyncio.Queue:
        queue = asyncio.Queue()
        self.active_connections.setdefault(identity_id, set()).add(queue)
        logger.info(
            "SSE connection established",
            identity_id=identity_id,
            streams=len(self.active_connections[identity_id]),
        )
        return queue

    def disconnect(self, identity_id: str, queue: asyncio.Queue):
        queues = self.active_connections.get(identity_id)
        if queues is None or queue not in queues:
            return
        queues.discard(queue)
        if not queues:
            del self.active_connections[identity_id]
        logger.info("SSE connection closed", identity_id=identity_id, streams=len(queues))

    async def send_personal_message(
        self, message: Union[str, dict], identity_id: str, event: str = "message"
    ) -> bool:
        """Queue an event on every stream of an identity. Returns False if none is open."""
        queues = self.active_connections.get(identity_id)
        if not queues:
            logger.debug("No SSE connection for recipient", identity_id=identity_id)
            return False

        if isinstance(message, dict):
            if "request_id" not in message:
                req_id = get_contextvars().get("request_id")
                if req_id:
                    message["request_id"] = req_id
            json_data = json.dumps(message)
        else:
            json_data = message
        for queue in list(queues):
            await queue.put({"event": event, "data": json_data})
        logger.info("Sent SSE event", sse_event=event, identity_id=identity_id, streams=len(queues))
        return True


manager = ConnectionManager()


# --- Profile Endpoints --- #
@app.get("/me", response_model=schemas.Profile, tags=["Profile"])
def get_me(
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Resolve the caller's profile. 204 means the profile isn't completed yet."""
    user = crud.get_profile(db, identity.sub)
    if user is None:
        return Response(
            status_code=status.HTTP_204_NO_CONTENT,
            headers={"X-Profile-Status": "no_profile_found"},
        )
    return schemas.profile_from_row(user)


@app.post(
    "/profile/",
    response_model=schemas.Profile,
    status_code=status.HTTP_201_CREATED,
    tags=["Profile"],
)
def complete_profile_endpoint(
    completion: schemas.ProfileCompletion,
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    if crud.get_profile(db, identity.sub):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Profile already completed")

    profile = completion.root
    if not (profile.email or identity.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")

    try:
        user = crud.create_profile(db, identity, profile)
    except IntegrityError:
        # Lost a race with a concurrent completion for the same identity
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Profile already completed")
    logger.info("Profile completed", identity_id=identity.sub, role=user.role)
    return schemas.profile_from_row(user)


@app.get("/profiles/{identity_id}", response_model=schemas.Profile, tags=["Profile"])
def get_profile_endpoint(
    identity_id: str,
    current: models.User = Depends(require_profile),
    db: Session = Depends(get_db),
):
    user = crud.get_profile(db, identity_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return schemas.profile_from_row(user)


# --- Job Endpoints --- #
@app.post("/jobs/", response_model=schemas.Job, status_code=status.HTTP_201_CREATED, tags=["Jobs"])
def create_job_endpoint(
    job: schemas.JobCreate,
    employer: models.User = Depends(require_employer),
    db: Session = Depends(get_db),
):
    db_job = crud.create_job(db, job, poster_id=employer.identity_id)
    logger.info("Job posted", job_id=db_job.id, posted_by=employer.identity_id)
    return db_job


@app.get("/jobs/", response_model=List[schemas.Job], tags=["Jobs"])
def list_jobs_endpoint(
    filters: schemas.JobFilters = Depends(),
    current: models.User = Depends(require_profile),
    db: Session = Depends(get_db),
):
    return crud.list_jobs(db, filters)


@app.get("/jobs/mine", response_model=List[schemas.Job], tags=["Jobs"])
def list_my_jobs_endpoint(
    employer: models.User = Depends(require_employer),
    db: Session = Depends(get_db),
):
    return crud.get_jobs_for_poster(db, employer.identity_id)


@app.get("/jobs/{job_id}", response_model=schemas.Job, tags=["Jobs"])
def get_job_endpoint(
    job_id: int,
    current: models.User = Depends(require_profile),
    db: Session = Depends(get_db),
):
    job = crud.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@app.patch("/jobs/{job_id}", response_model=schemas.Job, tags=["Jobs"])
def update_job_endpoint(
    job_id: int,
    changes: schemas.JobUpdate,
    current: models.User = Depends(require_profile),
    db: Session = Depends(get_db),
):
    job = crud.update_job(db, job_id, current, changes)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    logger.info(
        "Job updated",
        job_id=job_id,
        identity_id=current.identity_id,
        fields=sorted(changes.model_dump(exclude_unset=True)),
    )
    return job


@app.delete("/jobs/{job_id}", tags=["Jobs"])
def delete_job_endpoint(
    job_id: int,
    current: models.User = Depends(require_profile),
    db: Session = Depends(get_db),
):
    logger.info("Attempting to delete job", job_id=job_id, identity_id=current.identity_id)
    if not crud.delete_job(db, job_id, current):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return {"status": "deleted", "job_id": job_id}


# --- Application Endpoints --- #
@app.post(
    "/jobs/{job_id}/applications",
    response_model=schemas.Application,
    status_code=status.HTTP_201_CREATED,
    tags=["Applications"],
)
def submit_application_endpoint(
    job_id: int,
    application: schemas.ApplicationCreate,
    seeker: models.User = Depends(require_job_seeker),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    job = crud.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    if job.status != models.JOB_ACTIVE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job is no longer accepting applications")
    if not settings.allow_duplicate_applications and crud.has_applied(db, job_id, seeker.identity_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already applied to this job")

    db_application = crud.create_application(db, job, seeker.identity_id, application)
    logger.info(
        "Application submitted",
        application_id=db_application.id,
        job_id=job_id,
        applicant_id=seeker.identity_id,
    )
    return db_application


@app.get("/jobs/{job_id}/applications", response_model=List[schemas.Application], tags=["Applications"])
def list_job_applications_endpoint(
    job_id: int,
    current: models.User = Depends(require_profile),
    db: Session = Depends(get_db),
):
    applications = crud.get_applications_for_job(db, job_id, current)
    if applications is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return applications


@app.get("/applications/mine", response_model=List[schemas.Application], tags=["Applications"])
def list_my_applications_endpoint(
    seeker: models.User = Depends(require_job_seeker),
    db: Session = Depends(get_db),
):
    return crud.get_applications_for_applicant(db, seeker.identity_id)


@app.patch(
    "/applications/{application_id}/status",
    response_model=schemas.Application,
    tags=["Applications"],
)
def review_application_endpoint(
    application_id: int,
    decision: schemas.ApplicationStatusUpdate,
    employer: models.User = Depends(require_employer),
    db: Session = Depends(get_db),
):
    application = crud.get_application_for_reviewer(db, application_id, employer.identity_id)
    if not application:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")

    # Raises InvalidStatusTransition -> 409 when the application is already decided
    if not crud.update_application_status(db, application, decision.status):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Application was already reviewed")

    logger.info(
        "Application reviewed",
        application_id=application_id,
        status=decision.status,
        reviewer_id=employer.identity_id,
    )
    return application


# --- Messaging Endpoints --- #
@app.post(
    "/messages/",
    response_model=schemas.Message,
    status_code=status.HTTP_201_CREATED,
    tags=["Messages"],
)
async def send_message_endpoint(
    message: schemas.MessageCreate,
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    if message.recipient_id == identity.sub:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot message yourself")

    # Session work is blocking; keep it off the event loop
    db_message = await run_in_threadpool(crud.create_message, db, identity.sub, message)
    logger.info(
        "Message sent",
        message_id=db_message.id,
        sender_id=identity.sub,
        recipient_id=message.recipient_id,
        job_id=db_message.job_id,
    )

    payload = schemas.Message.model_validate(db_message)
    await manager.send_personal_message(
        payload.model_dump(mode="json"), message.recipient_id, event="message_received"
    )
    return payload


@app.get("/messages/inbox", response_model=List[schemas.InboxEntry], tags=["Messages"])
def inbox_endpoint(
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Latest message from each sender, newest first."""
    latest = logic.summarize_inbox(crud.get_messages_to(db, identity.sub))
    names = crud.get_profile_names(db, (msg.sender_id for msg in latest))
    return [
        schemas.InboxEntry(
            sender_id=msg.sender_id,
            sender_name=logic.display_name(msg.sender_id, names),
            message=schemas.Message.model_validate(msg),
        )
        for msg in latest
    ]


@app.get(
    "/messages/conversations/{counterpart_id}",
    response_model=schemas.Conversation,
    tags=["Messages"],
)
def conversation_endpoint(
    counterpart_id: str,
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    messages = crud.get_conversation(db, identity.sub, counterpart_id)
    names = crud.get_profile_names(db, [counterpart_id])
    return schemas.Conversation(
        counterpart_id=counterpart_id,
        counterpart_name=logic.display_name(counterpart_id, names),
        job_id=crud.get_conversation_job_id(db, identity.sub, counterpart_id),
        messages=[schemas.Message.model_validate(m) for m in messages],
    )


# --- Admin Endpoints --- #
@app.get("/admin/stats", response_model=schemas.AdminStats, tags=["Admin"])
def admin_stats_endpoint(
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return crud.get_stats(db)


@app.get("/admin/users", response_model=List[schemas.Profile], tags=["Admin"])
def admin_users_endpoint(
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return [schemas.profile_from_row(user) for user in crud.list_profiles(db)]


# --- SSE Endpoint --- #
@app.get("/stream-messages", tags=["Messages"])
async def stream_messages(request: Request, token: Optional[str] = None, identity_id: Optional[str] = None):
    """Server-Sent Events stream of messages addressed to the caller.

    EventSource can't send headers, so the token travels in the query string.
    """
    settings = get_settings()
    if settings.auth_enabled:
        if not token:
            logger.warning("SSE 401: No token provided while auth is enabled")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")
        identity_id = verify_token(token).sub
        logger.info("SSE auth ok", identity_id=identity_id)
    else:
        # Local mode has no provider to verify against; a token is ignored
        if not identity_id:
            logger.warning("SSE 401: Missing identity_id in local mode")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="identity_id query parameter required in local mode",
            )
        logger.info("SSE local mode auth ok", identity_id=identity_id)

    queue = await manager.connect(identity_id)

    async def event_generator():
        try:
            while True:
                message_dict = await queue.get()
                if await request.is_disconnected():
                    logger.info("SSE client disconnected before send", identity_id=identity_id)
                    break
                yield message_dict
        except asyncio.CancelledError:
            logger.info("SSE connection cancelled", identity_id=identity_id)
        finally:
            manager.disconnect(identity_id, queue)

    return EventSourceResponse(event_generator())


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
