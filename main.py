import asyncio
from typing import List, Optional, Union
import json

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
import structlog
from structlog.contextvars import get_contextvars

import models
import schemas
import crud
import documents
import logic
from database import SessionLocal, create_db_and_tables, get_db, session_scope
from auth import (
    get_current_user,
    get_or_create_user,
    require_admin,
    require_applicant,
    require_company,
    verify_token,
)
from settings import get_settings, Settings
from request_id_middleware import RequestIdMiddleware
from observability import METRICS_NAMESPACE, init_observability, metric_scope


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)

# Create DB tables on startup
create_db_and_tables()

app = FastAPI(
    title="Job Board",
    description="Backend API for the job board: postings, applications and CV match scoring",
    version="0.1.0",
)

# --- CORS Middleware ---
origins = [
    "http://localhost",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1",
    "http://127.0.0.1:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)


# --- SSE Connection Manager (Simple In-Memory) --- #
class ConnectionManager:
    def __init__(self):
        # Dictionary to hold asyncio Queues for each user_id
        self.active_connections: dict[int, asyncio.Queue] = {}

    async def connect(self, user_id: int) -> asyncio.Queue:
        """Registers a new user connection and returns their queue."""
        queue = asyncio.Queue()
        self.active_connections[user_id] = queue
        logger.info("SSE connection established", user_id=user_id)
        return queue

    def disconnect(self, user_id: int):
        """Removes a user's queue when they disconnect."""
        if user_id in self.active_connections:
            del self.active_connections[user_id]
            logger.info("SSE connection closed", user_id=user_id)

    async def send_personal_message(
        self, message: Union[str, dict], user_id: int, event: str = "message"
    ) -> None:
        if user_id not in self.active_connections:
            logger.debug("No SSE connection for user; event dropped", user_id=user_id, sse_event=event)
            return

        # If the message is a dict, inject request_id for correlation if missing
        if isinstance(message, dict):
            if "request_id" not in message:
                req_id = get_contextvars().get("request_id")
                if req_id:
                    message["request_id"] = req_id
            json_data = json.dumps(message, default=str)
        else:
            json_data = message
        await self.active_connections[user_id].put({"event": event, "data": json_data})
        logger.info("Sent SSE event", sse_event=event, user_id=user_id)


manager = ConnectionManager()


# --- Helpers ---
def _job_listing(job: models.Job) -> schemas.JobListing:
    return schemas.JobListing(
        **schemas.Job.model_validate(job).model_dump(),
        company_name=job.company.company_name,
        company_location=job.company.location,
        company_category=job.company.category,
    )


def _get_own_company(db: Session, user: models.User) -> models.Company:
    company = crud.get_company_for_owner(db, owner_id=user.id)
    if not company:
        raise HTTPException(status_code=404, detail="No company registered for this user")
    return company


@app.get("/health", tags=["Meta"])
def health():
    return {"status": "ok"}


# --- User Endpoints ---
@app.get("/users/me", response_model=schemas.User, tags=["Auth"])
def get_me(current_user: models.User = Depends(get_current_user)):
    """Returns the authenticated user's database record."""
    return current_user


@app.post("/onboarding", response_model=schemas.User, tags=["Auth"])
def onboarding_endpoint(
    registration: schemas.OnboardingRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Pick the account type. Companies are registered pending admin approval."""
    if current_user.role:
        raise HTTPException(status_code=400, detail="User already onboarded")

    if registration.role == models.ROLE_COMPANY:
        if not (registration.company_name or "").strip():
            raise HTTPException(status_code=422, detail="company_name is required for companies")
        crud.create_company(db, owner_id=current_user.id, registration=registration)

    crud.set_user_role(db, current_user, registration.role, full_name=registration.full_name)
    db.commit()
    db.refresh(current_user)
    logger.info("User onboarded", user_id=current_user.id, role=current_user.role)
    return current_user


# --- Public Job Endpoints ---
@app.get("/jobs/", response_model=List[schemas.JobListing], tags=["Jobs"])
def list_jobs_endpoint(q: Optional[str] = None, db: Session = Depends(get_db)):
    return [_job_listing(job) for job in crud.get_listed_jobs(db, search=q)]


@app.get("/jobs/{job_id}", response_model=schemas.JobListing, tags=["Jobs"])
def get_job_endpoint(job_id: int, db: Session = Depends(get_db)):
    job = crud.get_listed_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_listing(job)


# --- Applications ---
@metric_scope
async def process_application_in_background(
    application_id: int,
    user_id: int,
    manager_override: Union[ConnectionManager, None] = None,
    db_session_override: Union[Session, None] = None,
    metrics=None,
):
    """Background task analyzing a freshly submitted application.

    Failures are logged and reported to the applicant over SSE; the application
    stays pending with no analysis.
    """
    metrics.set_namespace(METRICS_NAMESPACE)
    metrics.put_metric("analyses_started", 1, "Count")
    metrics.set_property("application_id", application_id)
    _manager = manager_override or manager

    try:
        if db_session_override is not None:
            analysis, recommendations = await logic.analyze_application(
                db_session_override, application_id
            )
        else:
            with session_scope() as db_session:
                analysis, recommendations = await logic.analyze_application(
                    db_session, application_id
                )
    except Exception as exc:
        metrics.put_metric("analyses_failed", 1, "Count")
        logger.error(
            "BG Task: CV analysis failed",
            application_id=application_id,
            error=str(exc),
            exc_info=True,
        )
        if db_session_override is not None:
            db_session_override.rollback()
        await _manager.send_personal_message(
            {
                "application_id": application_id,
                "error": "analysis_failed",
                "message": "Failed to analyze CV",
            },
            user_id,
            event="application_error",
        )
        return

    metrics.put_metric("analyses_completed", 1, "Count")
    metrics.put_metric("match_score", analysis.match_score, "None")
    await _manager.send_personal_message(
        {
            "application_id": application_id,
            "match_score": analysis.match_score,
            "analysis": analysis.model_dump(),
            "recommendations": [rec.model_dump() for rec in recommendations],
        },
        user_id,
        event="application_analyzed",
    )


@app.post(
    "/jobs/{job_id}/apply",
    response_model=schemas.Application,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Applications"],
)
async def apply_to_job_endpoint(
    job_id: int,
    background_tasks: BackgroundTasks,
    cv: UploadFile = File(...),
    cover_letter: Optional[str] = Form(None),
    current_user: models.User = Depends(require_applicant),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Submit an application; the CV analysis runs after the response is sent."""
    job = crud.get_listed_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    try:
        extension = documents.extension_for(cv.content_type, cv.filename)
    except documents.UnsupportedDocumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    content = await cv.read()
    if not content:
        raise HTTPException(status_code=400, detail="CV file is empty")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="CV file is too large")

    existing = (
        db.query(models.Application)
        .filter(
            models.Application.job_id == job_id,
            models.Application.applicant_id == current_user.id,
        )
        .first()
    )
    if existing:
        raise HTTPException(status_code=409, detail="You have already applied for this job")

    cv_ref = documents.save_document(settings.upload_dir, current_user.id, content, extension)
    try:
        application = crud.create_application(
            db,
            job_id=job_id,
            applicant_id=current_user.id,
            cv_ref=cv_ref,
            cover_letter=cover_letter,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        documents.delete_document(settings.upload_dir, cv_ref)
        raise HTTPException(status_code=409, detail="You have already applied for this job")
    except SQLAlchemyError:
        db.rollback()
        documents.delete_document(settings.upload_dir, cv_ref)
        raise
    db.refresh(application)

    logger.info("Application submitted", application_id=application.id, job_id=job_id)
    await manager.send_personal_message(
        schemas.Application.model_validate(application).model_dump(mode="json"),
        current_user.id,
        event="application_created",
    )
    background_tasks.add_task(process_application_in_background, application.id, current_user.id)
    return application


@app.get("/applications/", response_model=List[schemas.ApplicantApplication], tags=["Applications"])
def list_my_applications_endpoint(
    current_user: models.User = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    return [
        schemas.ApplicantApplication(
            **schemas.Application.model_validate(application).model_dump(),
            job_title=application.job.title,
            company_name=application.job.company.company_name,
        )
        for application in crud.get_applications_for_applicant(db, applicant_id=current_user.id)
    ]


def _can_access_application(user: models.User, application: models.Application) -> bool:
    """Applicants see their own applications, companies those for their jobs, admins all."""
    if user.role == models.ROLE_ADMIN:
        return True
    if application.applicant_id == user.id:
        return True
    return application.job.company.owner_id == user.id


@app.post(
    "/analyze-cv",
    response_model=schemas.AnalyzeCVResponse,
    tags=["Analysis"],
    openapi_extra={
        "requestBody": {
            "content": {
                "application/json": {"schema": schemas.AnalyzeCVRequest.model_json_schema()}
            }
        }
    },
)
async def analyze_cv_endpoint(
    request: Request,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Run the CV analysis for one application and wait for the result.

    The body is validated here rather than by FastAPI so that every malformed
    request answers 400 with an ``{"error": ...}`` payload.
    """
    raw_body = await request.body()
    try:
        request_body = schemas.AnalyzeCVRequest.model_validate_json(raw_body or b"{}")
    except ValidationError:
        return JSONResponse(
            status_code=400, content={"error": "application_id must be an integer"}
        )
    if request_body.application_id is None:
        return JSONResponse(status_code=400, content={"error": "application_id is required"})

    application_id = request_body.application_id
    application = crud.get_application(db, application_id)
    # A missing application is reported by the analysis itself
    if application and not _can_access_application(current_user, application):
        logger.warning(
            "analyze-cv forbidden", application_id=application_id, user_id=current_user.id
        )
        return JSONResponse(
            status_code=403, content={"error": "Not allowed to analyze this application"}
        )

    try:
        analysis, recommendations = await logic.analyze_application(db, application_id)
    except Exception as exc:
        db.rollback()
        logger.error("Error in analyze-cv", application_id=application_id, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": str(exc) or "Unknown error occurred"},
        )

    return schemas.AnalyzeCVResponse(
        success=True,
        analysis=analysis,
        recommendations_count=len(recommendations),
    )


# --- Company Endpoints ---
@app.get("/company/me", response_model=schemas.Company, tags=["Company"])
def get_my_company_endpoint(
    current_user: models.User = Depends(require_company),
    db: Session = Depends(get_db),
):
    return _get_own_company(db, current_user)


@app.post(
    "/company/jobs",
    response_model=schemas.Job,
    status_code=status.HTTP_201_CREATED,
    tags=["Company"],
)
def create_job_endpoint(
    job: schemas.JobCreate,
    current_user: models.User = Depends(require_company),
    db: Session = Depends(get_db),
):
    company = _get_own_company(db, current_user)
    if company.status != models.COMPANY_APPROVED:
        raise HTTPException(status_code=403, detail="Company is awaiting admin approval")

    db_job = crud.create_job(db, job=job, company_id=company.id)
    db.commit()
    db.refresh(db_job)
    logger.info("Job posted", job_id=db_job.id, company_id=company.id)
    return db_job


@app.get("/company/jobs", response_model=List[schemas.CompanyJob], tags=["Company"])
def list_company_jobs_endpoint(
    current_user: models.User = Depends(require_company),
    db: Session = Depends(get_db),
):
    company = _get_own_company(db, current_user)
    return [
        schemas.CompanyJob(
            **schemas.Job.model_validate(job).model_dump(),
            application_count=count,
        )
        for job, count in crud.get_jobs_for_company(db, company_id=company.id)
    ]


@app.patch("/company/jobs/{job_id}", response_model=schemas.Job, tags=["Company"])
def update_job_status_endpoint(
    job_id: int,
    update: schemas.JobStatusUpdate,
    current_user: models.User = Depends(require_company),
    db: Session = Depends(get_db),
):
    company = _get_own_company(db, current_user)
    db_job = crud.update_job_status(db, job_id=job_id, company_id=company.id, status=update.status)
    if not db_job:
        raise HTTPException(status_code=404, detail="Job not found")
    db.commit()
    db.refresh(db_job)
    return db_job


@app.get(
    "/company/jobs/{job_id}/applications",
    response_model=List[schemas.JobApplicant],
    tags=["Company"],
)
def list_job_applications_endpoint(
    job_id: int,
    current_user: models.User = Depends(require_company),
    db: Session = Depends(get_db),
):
    company = _get_own_company(db, current_user)
    job = crud.get_job(db, job_id)
    if not job or job.company_id != company.id:
        raise HTTPException(status_code=404, detail="Job not found")

    return [
        schemas.JobApplicant(
            **schemas.Application.model_validate(application).model_dump(),
            applicant_email=application.applicant.email,
            applicant_name=application.applicant.full_name,
        )
        for application in crud.get_applications_for_job(db, job_id=job_id)
    ]


@app.patch(
    "/company/applications/{application_id}",
    response_model=schemas.Application,
    tags=["Company"],
)
async def update_application_status_endpoint(
    application_id: int,
    update: schemas.ApplicationStatusUpdate,
    current_user: models.User = Depends(require_company),
    db: Session = Depends(get_db),
):
    company = _get_own_company(db, current_user)
    application = crud.get_application(db, application_id)
    if not application or application.job.company_id != company.id:
        raise HTTPException(status_code=404, detail="Application not found")

    crud.update_application_status(db, application_id=application_id, status=update.status)
    db.commit()
    db.refresh(application)
    await manager.send_personal_message(
        {"application_id": application_id, "status": application.status},
        application.applicant_id,
        event="application_status",
    )
    return application


@app.get("/company/applications/{application_id}/cv", tags=["Company"])
def download_application_cv_endpoint(
    application_id: int,
    current_user: models.User = Depends(require_company),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Return the CV the applicant uploaded, for the company that posted the job."""
    company = _get_own_company(db, current_user)
    application = crud.get_application(db, application_id)
    if not application or application.job.company_id != company.id:
        raise HTTPException(status_code=404, detail="Application not found")

    try:
        content = documents.read_document(settings.upload_dir, application.cv_ref)
    except documents.DocumentNotFoundError:
        logger.error("Stored CV missing", application_id=application_id, cv_ref=application.cv_ref)
        raise HTTPException(status_code=404, detail="CV not found")

    filename = f"application-{application_id}-cv.{application.cv_ref.rsplit('.', 1)[-1]}"
    return Response(
        content=content,
        media_type=documents.media_type_for(application.cv_ref),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# --- Admin Endpoints ---
@app.get("/admin/companies", response_model=List[schemas.Company], tags=["Admin"])
def list_companies_endpoint(
    status: Optional[str] = models.COMPANY_PENDING,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return crud.get_companies_by_status(db, status=status)


@app.patch("/admin/companies/{company_id}", response_model=schemas.Company, tags=["Admin"])
def update_company_status_endpoint(
    company_id: int,
    update: schemas.CompanyStatusUpdate,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    company = crud.update_company_status(db, company_id=company_id, status=update.status)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    db.commit()
    db.refresh(company)
    logger.info("Company status updated", company_id=company_id, status=update.status, admin_id=current_user.id)
    return company


@app.get("/admin/stats", response_model=schemas.PlatformStats, tags=["Admin"])
def platform_stats_endpoint(
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return crud.get_platform_stats(db)


# --- SSE Endpoint --- #
@app.get("/stream-applications")
async def stream_applications(request: Request, token: Union[str, None] = None):
    """Server-Sent Events stream of application updates for the current user.

    EventSource cannot send headers, so the id token comes as a query parameter.
    """
    settings = get_settings()
    if settings.auth_enabled and not token:
        logger.warning("SSE 401: No token provided while auth is enabled")
        raise HTTPException(401, "No token provided")

    payload = verify_token(token or "")
    with SessionLocal() as db:
        user = get_or_create_user(db, payload.email or payload.sub, payload.sub)
        user_id = user.id
    logger.info("SSE auth ok", user_id=user_id)

    queue = await manager.connect(user_id)

    async def event_generator():
        try:
            while True:
                message_dict = await queue.get()
                if await request.is_disconnected():
                    logger.info("SSE client disconnected before sending", user_id=user_id)
                    break
                yield message_dict
        except asyncio.CancelledError:
            logger.info("SSE connection cancelled", user_id=user_id)
        finally:
            manager.disconnect(user_id)

    return EventSourceResponse(event_generator())


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
