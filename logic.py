import functools
import hashlib
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

import crud
import documents
import schemas
from llm_interaction import call_llm_for_cv_analysis
from scoring import calculate_match, recommend_jobs
from settings import get_settings

# Set up logging
logger = structlog.get_logger(__name__)


class AnalysisError(Exception):
    """The CV analysis could not be completed."""


class ApplicationNotFoundError(AnalysisError, LookupError):
    pass


# Simple LLM response cache to reduce API calls
_LLM_CACHE = {}


def cache_llm_response(func):
    """Decorator to cache LLM responses based on function parameters"""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        # Create a unique key based on function name and all arguments
        args_str = [str(arg) for arg in args]
        kwargs_str = [f"{k}={v}" for k, v in sorted(kwargs.items())]
        all_args = func.__name__ + "|" + "|".join(args_str + kwargs_str)
        cache_key = hashlib.md5(all_args.encode()).hexdigest()

        if cache_key in _LLM_CACHE:
            logger.info(
                f"Using cached LLM response for {func.__name__}, hash {cache_key[:8]}"
            )
            return _LLM_CACHE[cache_key]

        result = await func(*args, **kwargs)

        if result is not None:
            _LLM_CACHE[cache_key] = result

        return result

    return wrapper


call_llm_for_cv_analysis_cached = cache_llm_response(call_llm_for_cv_analysis)


def load_cv_text(cv_ref: str, upload_dir: Optional[str] = None) -> str:
    upload_dir = upload_dir or get_settings().upload_dir
    try:
        return documents.load_document_text(upload_dir, cv_ref)
    except (documents.DocumentNotFoundError, documents.UnsupportedDocumentError) as exc:
        raise AnalysisError(str(exc)) from exc


async def analyze_application(
    db: Session, application_id: int, upload_dir: Optional[str] = None
) -> Tuple[schemas.CVAnalysis, List[schemas.Recommendation]]:
    """Analyze an application's CV against its job and persist the result.

    Extracts the CV text, asks the LLM for structured attributes, scores the
    extracted skills against the job's required skills, ranks other listed jobs
    as recommendations and marks the application ``analyzed``. Commits on
    success; on any failure nothing is written and the exception propagates.
    """
    logger.info("Analyzing application", application_id=application_id)

    db_application = crud.get_application(db, application_id)
    if not db_application:
        raise ApplicationNotFoundError(f"Application {application_id} not found")
    db_job = db_application.job
    if not db_job:
        raise ApplicationNotFoundError(f"Job for application {application_id} not found")

    cv_text = load_cv_text(db_application.cv_ref, upload_dir)
    if not cv_text.strip():
        raise AnalysisError("Could not extract text from the CV")

    required_skills = list(db_job.required_skills or [])
    analysis: schemas.CVAnalysis = await call_llm_for_cv_analysis_cached(
        required_skills, cv_text
    )

    # The stored score is the skill-overlap score, not the model's own estimate
    analysis = analysis.model_copy(
        update={"match_score": calculate_match(analysis.skills, required_skills)}
    )

    catalog = crud.get_catalog_jobs(db, exclude_job_id=db_job.id)
    recommendations = recommend_jobs(analysis.skills, catalog, exclude_job_id=db_job.id)

    crud.update_application_analysis(
        db,
        application_id=application_id,
        analysis=analysis,
        recommendations=recommendations,
    )
    db.commit()

    logger.info(
        "Successfully analyzed application",
        application_id=application_id,
        match_score=analysis.match_score,
        recommendations=len(recommendations),
    )
    return analysis, recommendations
