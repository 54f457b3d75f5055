"""Skill-overlap scoring between a candidate and job postings.

Both functions are pure: they read their inputs and return a value. Persisting
results is the caller's job (see ``logic.analyze_application``).
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import schemas

RECOMMENDATION_THRESHOLD = 60
MAX_RECOMMENDATIONS = 5


def calculate_match(candidate_skills: Sequence[str], required_skills: Sequence[str]) -> int:
    """Percentage (0-100) of ``required_skills`` covered by ``candidate_skills``.

    Matching is case-insensitive substring containment in either direction, so
    "javascript" covers a "java" requirement. An empty requirement list scores 0.
    """
    if not required_skills:
        return 0

    candidate = [skill.lower() for skill in candidate_skills]
    required = [skill.lower() for skill in required_skills]

    covered = sum(
        1 for req in required if any(c in req or req in c for c in candidate)
    )
    total = len(required)
    # Integer half-up rounding of covered / total * 100
    return (covered * 200 + total) // (2 * total)


def recommend_jobs(
    candidate_skills: Sequence[str],
    catalog: Iterable,
    exclude_job_id: Optional[int] = None,
) -> List[schemas.Recommendation]:
    """Best-matching alternative jobs for a candidate.

    ``catalog`` items need ``id``, ``title`` and ``required_skills`` attributes
    (``models.Job`` rows work). Only jobs scoring at least
    ``RECOMMENDATION_THRESHOLD`` are kept, highest score first, ties in catalog
    order, at most ``MAX_RECOMMENDATIONS``.
    """
    scored = [
        schemas.Recommendation(
            job_id=job.id,
            title=job.title,
            match_score=calculate_match(candidate_skills, job.required_skills or []),
        )
        for job in catalog
        if exclude_job_id is None or job.id != exclude_job_id
    ]
    kept = [rec for rec in scored if rec.match_score >= RECOMMENDATION_THRESHOLD]
    # sorted() is stable, so equal scores keep catalog order
    kept = sorted(kept, key=lambda rec: rec.match_score, reverse=True)
    return kept[:MAX_RECOMMENDATIONS]
