from sqlalchemy.orm import relationship
from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    Text,
    DateTime,
    func,
    JSON,
    UniqueConstraint,
)
from database import Base


# Status / role values stored as plain strings
ROLE_APPLICANT = "applicant"
ROLE_COMPANY = "company"
ROLE_ADMIN = "admin"

COMPANY_PENDING = "pending"
COMPANY_APPROVED = "approved"
COMPANY_REJECTED = "rejected"

JOB_ACTIVE = "active"
JOB_CLOSED = "closed"

APPLICATION_PENDING = "pending"
APPLICATION_ANALYZED = "analyzed"
APPLICATION_REVIEWED = "reviewed"
APPLICATION_ACCEPTED = "accepted"
APPLICATION_REJECTED = "rejected"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String, unique=True, index=True)
    cognito_sub = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=True)  # null until onboarding
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    company = relationship("Company", back_populates="owner", uselist=False)
    applications = relationship("Application", back_populates="applicant")


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    company_name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    location = Column(String, nullable=True)
    registration_certificate = Column(String, nullable=True)
    status = Column(String, nullable=False, default=COMPANY_PENDING, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("User", back_populates="company")
    jobs = relationship("Job", back_populates="company")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    required_skills = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False, default=JOB_ACTIVE, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    company = relationship("Company", back_populates="jobs")
    applications = relationship("Application", back_populates="job")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("job_id", "applicant_id", name="uq_application_job_applicant"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False)
    applicant_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    cv_ref = Column(String, nullable=False)
    cover_letter = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=APPLICATION_PENDING)
    # Filled in by the CV analysis
    match_score = Column(Integer, nullable=True)
    ai_analysis = Column(JSON, nullable=True)
    recommended_jobs = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    job = relationship("Job", back_populates="applications")
    applicant = relationship("User", back_populates="applications")
