from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Users ---
class UserCreate(BaseModel):
    email: str
    cognito_sub: Optional[str] = None
    full_name: Optional[str] = None


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    full_name: Optional[str] = None
    role: Optional[str] = None


class OnboardingRequest(BaseModel):
    role: Literal["applicant", "company"]
    full_name: Optional[str] = None
    # Company registration fields, required when role == "company"
    company_name: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    registration_certificate: Optional[str] = None


# --- Companies ---
class Company(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    company_name: str
    category: Optional[str] = None
    location: Optional[str] = None
    registration_certificate: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None


class CompanyStatusUpdate(BaseModel):
    status: Literal["approved", "rejected"]


# --- Jobs ---
class JobCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    required_skills: List[str] = Field(default_factory=list)


class Job(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    required_skills: List[str] = Field(default_factory=list)
    status: str
    created_at: Optional[datetime] = None


class JobListing(Job):
    """A job as shown to job seekers, with its company's public details."""

    company_name: str
    company_location: Optional[str] = None
    company_category: Optional[str] = None


class CompanyJob(Job):
    application_count: int = 0


class JobStatusUpdate(BaseModel):
    status: Literal["active", "closed"]


# --- CV analysis ---
class CVAnalysis(BaseModel):
    """Structured attributes the language model extracts from a CV."""

    skills: List[str]
    experience_years: float
    education: str
    match_score: int


class Recommendation(BaseModel):
    job_id: int
    title: str
    match_score: int


class AnalyzeCVRequest(BaseModel):
    application_id: Optional[int] = None


class AnalyzeCVResponse(BaseModel):
    success: bool = True
    analysis: CVAnalysis
    recommendations_count: int


# --- Applications ---
class Application(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: int
    applicant_id: int
    cv_ref: str
    cover_letter: Optional[str] = None
    status: str
    match_score: Optional[int] = None
    ai_analysis: Optional[CVAnalysis] = None
    recommended_jobs: Optional[List[Recommendation]] = None
    created_at: Optional[datetime] = None


class ApplicantApplication(Application):
    """An application as seen by the applicant who submitted it."""

    job_title: str
    company_name: str


class JobApplicant(Application):
    """An application as seen by the company reviewing it."""

    applicant_email: Optional[str] = None
    applicant_name: Optional[str] = None


class ApplicationStatusUpdate(BaseModel):
    status: Literal["reviewed", "accepted", "rejected"]


# --- Admin ---
class PlatformStats(BaseModel):
    total_companies: int
    total_jobs: int
    total_applicants: int
    total_applications: int
