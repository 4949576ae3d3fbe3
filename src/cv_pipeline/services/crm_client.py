import logging
from abc import ABC, abstractmethod
from datetime import datetime

import httpx
from pydantic import BaseModel

from cv_pipeline.core.exceptions import CrmFatalError, CrmRetryableError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})


class CrmCvReference(BaseModel):
    url: str
    file_name: str
    uploaded_at: datetime
    is_latest: bool


class CrmCandidatePayload(BaseModel):
    """Body pushed to the CRM for one candidate and the CV being synced."""

    internal_id: str
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    linkedin: str | None = None
    portfolio: str | None = None
    job_title: str | None = None
    expertise_level: str | None = None
    country: str | None = None
    city: str | None = None
    source: str

    cv_id: str
    cv_url: str
    cv_file_name: str
    cv_uploaded_at: datetime
    cv_text: str | None = None
    cvs: list[CrmCvReference]

    sent_at: datetime
    candidate_created_at: datetime | None = None


class CrmClient(ABC):
    @abstractmethod
    async def push(self, payload: CrmCandidatePayload) -> str | None:
        """Deliver the payload and return the CRM record id.

        Raises CrmRetryableError for transient failures and CrmFatalError
        when the CRM refuses the payload.
        """
        ...

    async def aclose(self) -> None:
        return None


def classify_response(response: httpx.Response) -> None:
    """Raise the matching CrmError for a non-2xx response."""
    code = response.status_code
    if response.is_success:
        return
    detail = response.text[:2000]
    if code >= 500 or code in RETRYABLE_STATUS_CODES:
        raise CrmRetryableError(
            f"CRM temporarily unavailable (HTTP {code})", status_code=code, detail=detail
        )
    raise CrmFatalError(
        f"CRM rejected the candidate data (HTTP {code})", status_code=code, detail=detail
    )


def _record_id(body: object) -> object | None:
    # Accepts {"id": ..}, {"data": {"id": ..}} and {"data": [{"id": ..}]}
    if not isinstance(body, dict):
        return None
    if body.get("id") is not None:
        return body["id"]
    data = body.get("data")
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        return data.get("id")
    return None


class HttpCrmClient(CrmClient):
    """Pushes candidates to the CRM REST API over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def push(self, payload: CrmCandidatePayload) -> str | None:
        url = f"{self.base_url}/api/candidates"
        try:
            response = await self._client.post(
                url, json=payload.model_dump(mode="json"), headers=self._headers
            )
        except httpx.TimeoutException as e:
            raise CrmRetryableError("CRM request timed out", detail=str(e)) from e
        except httpx.TransportError as e:
            raise CrmRetryableError("Could not reach the CRM", detail=str(e)) from e

        classify_response(response)

        try:
            body = response.json()
        except ValueError:
            logger.debug("CRM returned a non-JSON body for %s", payload.cv_id)
            return None
        record_id = _record_id(body)
        return str(record_id) if record_id is not None else None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class UnconfiguredCrmClient(CrmClient):
    """Stand-in used when no CRM URL or API key is configured."""

    async def push(self, payload: CrmCandidatePayload) -> str | None:
        raise CrmFatalError("CRM integration is not configured")
