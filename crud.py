import uuid
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

import models
import schemas


# --- User CRUD ---
def get_user_by_id(db: Session, user_id: int):
    """Get a user by their primary key ID."""
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email).first()


def create_user(db: Session, user: schemas.UserCreate, role: Optional[str] = None):
    db_user = models.User(
        email=user.email,
        cognito_sub=user.cognito_sub or f"local-{uuid.uuid4()}",
        full_name=user.full_name,
        role=role,
    )
    db.add(db_user)
    db.flush()  # Assign ID without committing
    db.refresh(db_user)
    return db_user


def set_user_role(db: Session, user: models.User, role: str, full_name: Optional[str] = None):
    user.role = role
    if full_name:
        user.full_name = full_name
    db.add(user)
    db.flush()
    return user


# --- Company CRUD ---
def create_company(db: Session, owner_id: int, registration: schemas.OnboardingRequest):
    """Register a company for ``owner_id``; it starts out pending admin approval."""
    db_company = models.Company(
        owner_id=owner_id,
        company_name=registration.company_name,
        category=registration.category,
        location=registration.location,
        registration_certificate=registration.registration_certificate,
        status=models.COMPANY_PENDING,
    )
    db.add(db_company)
    db.flush()
    return db_company


def get_company(db: Session, company_id: int):
    return db.query(models.Company).filter(models.Company.id == company_id).first()


def get_company_for_owner(db: Session, owner_id: int):
    return db.query(models.Company).filter(models.Company.owner_id == owner_id).first()


def get_companies_by_status(db: Session, status: Optional[str] = None):
    query = db.query(models.Company)
    if status:
        query = query.filter(models.Company.status == status)
    return query.order_by(models.Company.created_at.desc(), models.Company.id.desc()).all()


def update_company_status(db: Session, company_id: int, status: str):
    db_company = get_company(db, company_id)
    if not db_company:
        return None

    db_company.status = status
    db.add(db_company)
    return db_company


# --- Job CRUD ---
def create_job(db: Session, job: schemas.JobCreate, company_id: int):
    db_job = models.Job(
        company_id=company_id,
        title=job.title,
        description=job.description,
        location=job.location,
        required_skills=list(job.required_skills),
        status=models.JOB_ACTIVE,
    )
    db.add(db_job)
    db.flush()
    return db_job


def get_job(db: Session, job_id: int):
    return db.query(models.Job).filter(models.Job.id == job_id).first()


def _listed_jobs_query(db: Session):
    """Active jobs belonging to approved companies."""
    return (
        db.query(models.Job)
        .join(models.Company, models.Job.company_id == models.Company.id)
        .options(joinedload(models.Job.company))
        .filter(
            models.Job.status == models.JOB_ACTIVE,
            models.Company.status == models.COMPANY_APPROVED,
        )
    )


def get_listed_job(db: Session, job_id: int):
    return _listed_jobs_query(db).filter(models.Job.id == job_id).first()


def get_listed_jobs(db: Session, search: Optional[str] = None) -> List[models.Job]:
    """Listed jobs newest first, optionally filtered on title, company name or a skill."""
    jobs = _listed_jobs_query(db).order_by(
        models.Job.created_at.desc(), models.Job.id.desc()
    ).all()
    if not search:
        return jobs

    term = search.lower()
    return [
        job
        for job in jobs
        if term in job.title.lower()
        or term in job.company.company_name.lower()
        or any(term in skill.lower() for skill in job.required_skills or [])
    ]


def get_catalog_jobs(db: Session, exclude_job_id: Optional[int] = None) -> List[models.Job]:
    """Jobs eligible for recommendation, in listing order."""
    query = _listed_jobs_query(db)
    if exclude_job_id is not None:
        query = query.filter(models.Job.id != exclude_job_id)
    return query.order_by(models.Job.created_at.desc(), models.Job.id.desc()).all()


def get_jobs_for_company(db: Session, company_id: int):
    """Company's jobs newest first, each paired with its application count."""
    return (
        db.query(models.Job, func.count(models.Application.id))
        .outerjoin(models.Application, models.Application.job_id == models.Job.id)
        .filter(models.Job.company_id == company_id)
        .group_by(models.Job.id)
        .order_by(models.Job.created_at.desc(), models.Job.id.desc())
        .all()
    )


def update_job_status(db: Session, job_id: int, company_id: int, status: str):
    db_job = (
        db.query(models.Job)
        .filter(models.Job.id == job_id, models.Job.company_id == company_id)
        .first()
    )
    if not db_job:
        return None

    db_job.status = status
    db.add(db_job)
    return db_job


# --- Application CRUD ---
def create_application(
    db: Session,
    job_id: int,
    applicant_id: int,
    cv_ref: str,
    cover_letter: Optional[str] = None,
):
    """Insert a pending application. Raises IntegrityError on a duplicate (job, applicant)."""
    db_application = models.Application(
        job_id=job_id,
        applicant_id=applicant_id,
        cv_ref=cv_ref,
        cover_letter=cover_letter or None,
        status=models.APPLICATION_PENDING,
    )
    db.add(db_application)
    db.flush()
    return db_application


def get_application(db: Session, application_id: int):
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.job))
        .filter(models.Application.id == application_id)
        .first()
    )


def get_applications_for_applicant(db: Session, applicant_id: int):
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.job).joinedload(models.Job.company))
        .filter(models.Application.applicant_id == applicant_id)
        .order_by(models.Application.created_at.desc(), models.Application.id.desc())
        .all()
    )


def get_applications_for_job(db: Session, job_id: int):
    """Applications for a job, best match first; unscored ones last."""
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.applicant))
        .filter(models.Application.job_id == job_id)
        .order_by(
            models.Application.match_score.is_(None),
            models.Application.match_score.desc(),
            models.Application.created_at.asc(),
            models.Application.id.asc(),
        )
        .all()
    )


def update_application_analysis(
    db: Session,
    application_id: int,
    analysis: schemas.CVAnalysis,
    recommendations: Sequence[schemas.Recommendation],
):
    db_application = get_application(db, application_id)
    if not db_application:
        return None

    db_application.ai_analysis = analysis.model_dump()
    db_application.match_score = analysis.match_score
    db_application.recommended_jobs = [rec.model_dump() for rec in recommendations]
    db_application.status = models.APPLICATION_ANALYZED
    db.add(db_application)
    return db_application


def update_application_status(db: Session, application_id: int, status: str):
    db_application = get_application(db, application_id)
    if not db_application:
        return None

    db_application.status = status
    db.add(db_application)
    return db_application


# --- Stats ---
def get_platform_stats(db: Session) -> schemas.PlatformStats:
    return schemas.PlatformStats(
        total_companies=db.query(func.count(models.Company.id)).scalar(),
        total_jobs=db.query(func.count(models.Job.id)).scalar(),
        total_applicants=db.query(func.count(models.User.id))
        .filter(models.User.role == models.ROLE_APPLICANT)
        .scalar(),
        total_applications=db.query(func.count(models.Application.id)).scalar(),
    )
