from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    database: str
    version: str
    queued_sync_attempts: int


class StatusResponse(BaseModel):
    status: str
