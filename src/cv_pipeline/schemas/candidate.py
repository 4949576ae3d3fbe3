import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from cv_pipeline.schemas.cv_history import CvHistoryRead


class ApplicationSource(StrEnum):
    DIRECT = "direct"
    QUICK_APPLICATION = "quick_application"
    REFERRAL = "referral"


class ExpertiseLevel(StrEnum):
    JUNIOR = "junior"
    INTERMEDIATE = "intermediate"
    SENIOR = "senior"
    EXPERT = "expert"


class CandidateCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(None, max_length=50)
    linkedin: str | None = Field(None, max_length=500)
    portfolio: str | None = Field(None, max_length=500)
    job_title: str | None = Field(None, max_length=200)
    expertise_level: ExpertiseLevel | None = None
    country: str | None = Field(None, max_length=100)
    city: str | None = Field(None, max_length=100)
    source: ApplicationSource = ApplicationSource.DIRECT


class CandidateUpdate(BaseModel):
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    linkedin: str | None = Field(None, max_length=500)
    portfolio: str | None = Field(None, max_length=500)
    job_title: str | None = Field(None, max_length=200)
    expertise_level: ExpertiseLevel | None = None
    country: str | None = Field(None, max_length=100)
    city: str | None = Field(None, max_length=100)


class CandidateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    phone: str | None
    linkedin: str | None
    portfolio: str | None
    job_title: str | None
    expertise_level: str | None
    country: str | None
    city: str | None
    source: str
    created_at: datetime
    updated_at: datetime


class QuickApplicationRead(BaseModel):
    candidate: CandidateRead
    cv_history: CvHistoryRead
    candidate_created: bool
