"""Integration tests for the candidates HTTP API.

These tests exercise the /api/v1/candidates endpoints through an HTTPX
AsyncClient wired to the FastAPI app with a real database.
"""

import uuid

import pytest

from tests.conftest import make_candidate_payload

pytestmark = pytest.mark.integration

API = "/api/v1/candidates"


# ── helpers ──────────────────────────────────────────────────────────────


async def _create_candidate(client, **overrides):
    """POST a new candidate and return the parsed JSON response."""
    payload = make_candidate_payload(**overrides)
    resp = await client.post(API, json=payload)
    assert resp.status_code == 201
    return resp.json()


# ── tests ────────────────────────────────────────────────────────────────


async def test_post_candidate_201(client):
    """POST /candidates returns 201 with the created candidate body."""
    payload = make_candidate_payload(first_name="Jane", last_name="Doe")
    resp = await client.post(API, json=payload)

    assert resp.status_code == 201
    body = resp.json()
    assert body["first_name"] == "Jane"
    assert body["last_name"] == "Doe"
    assert body["email"] == payload["email"]
    assert body["expertise_level"] == "senior"
    assert body["source"] == "direct"
    assert "id" in body
    assert "created_at" in body


async def test_post_candidate_invalid_email_422(client):
    resp = await client.post(API, json=make_candidate_payload(email="not-an-email"))
    assert resp.status_code == 422


async def test_post_candidate_duplicate_email_409(client):
    """POST /candidates with a duplicate email returns 409 Conflict."""
    shared_email = f"dup.{uuid.uuid4().hex[:8]}@example.com"
    await _create_candidate(client, email=shared_email)

    resp = await client.post(API, json=make_candidate_payload(email=shared_email))

    assert resp.status_code == 409
    assert "already exists" in resp.json()["detail"].lower()


async def test_get_candidate_200(client):
    created = await _create_candidate(client, first_name="GetMe")
    cid = created["id"]

    resp = await client.get(f"{API}/{cid}")

    assert resp.status_code == 200
    assert resp.json()["id"] == cid
    assert resp.json()["first_name"] == "GetMe"


async def test_get_candidate_404(client):
    """GET /candidates/{id} with a nonexistent UUID returns 404."""
    resp = await client.get(f"{API}/{uuid.uuid4()}")

    assert resp.status_code == 404
    assert "not found" in resp.json()["detail"].lower()


async def test_list_candidates_200(client):
    """GET /candidates returns a paginated response."""
    await _create_candidate(client, first_name="ListA")
    await _create_candidate(client, first_name="ListB")

    resp = await client.get(API, params={"skip": 0, "limit": 10})

    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 2
    assert body["skip"] == 0
    assert body["limit"] == 10
    assert {c["first_name"] for c in body["items"]} == {"ListA", "ListB"}


async def test_list_candidates_filter_source(client):
    """GET /candidates?source=referral filters by application source."""
    await _create_candidate(client, source="direct")
    await _create_candidate(client, source="referral")

    resp = await client.get(API, params={"source": "referral"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert all(c["source"] == "referral" for c in body["items"])


async def test_patch_candidate_200(client):
    """PATCH /candidates/{id} updates the specified fields."""
    created = await _create_candidate(client, first_name="Old", last_name="Name")
    cid = created["id"]

    resp = await client.patch(f"{API}/{cid}", json={"first_name": "New", "city": "Porto"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["first_name"] == "New"
    assert body["last_name"] == "Name"  # unchanged
    assert body["city"] == "Porto"


async def test_patch_candidate_404(client):
    resp = await client.patch(f"{API}/{uuid.uuid4()}", json={"first_name": "Nobody"})
    assert resp.status_code == 404


async def test_post_candidate_email_is_lowercased(client):
    resp = await client.post(API, json=make_candidate_payload(email="Mixed.Case@Example.com"))

    assert resp.status_code == 201
    assert resp.json()["email"] == "mixed.case@example.com"


async def test_post_candidate_duplicate_email_other_case_409(client):
    await _create_candidate(client, email="ana@example.com")

    resp = await client.post(API, json=make_candidate_payload(email="ANA@example.com"))

    assert resp.status_code == 409


async def test_list_candidates_search(client):
    await _create_candidate(client, first_name="Marta", last_name="Silva")
    await _create_candidate(client, first_name="Bruno", email="bruno.costa@example.com")

    by_name = (await client.get(API, params={"search": "silv"})).json()
    by_email = (await client.get(API, params={"search": "BRUNO.COSTA"})).json()

    assert [c["first_name"] for c in by_name["items"]] == ["Marta"]
    assert by_name["total"] == 1
    assert [c["first_name"] for c in by_email["items"]] == ["Bruno"]


async def test_list_candidates_search_treats_wildcards_literally(client):
    await _create_candidate(client, first_name="Ana")
    await _create_candidate(client, first_name="100%_Real")

    percent = (await client.get(API, params={"search": "%"})).json()
    underscore = (await client.get(API, params={"search": "n_"})).json()

    assert [c["first_name"] for c in percent["items"]] == ["100%_Real"]
    assert underscore["total"] == 0


async def test_patch_candidate_email_taken_409(client):
    await _create_candidate(client, email="taken@example.com")
    other = await _create_candidate(client)

    resp = await client.patch(f"{API}/{other['id']}", json={"email": "Taken@example.com"})

    assert resp.status_code == 409


# ── quick application ────────────────────────────────────────────────────


def _quick_form(**overrides):
    data = {
        "first_name": "Jane",
        "last_name": "Smith",
        "email": f"jane.{uuid.uuid4().hex[:8]}@example.com",
        "phone": "+351912345678",
    }
    data.update(overrides)
    return data


async def test_quick_application_creates_candidate_and_cv(client, sample_pdf_bytes, scheduler):
    form = _quick_form()
    resp = await client.post(
        f"{API}/quick-application",
        data=form,
        files={"cv": ("jane.pdf", sample_pdf_bytes, "application/pdf")},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["candidate_created"] is True
    assert body["candidate"]["email"] == form["email"]
    assert body["candidate"]["source"] == "quick_application"
    assert body["cv_history"]["candidate_id"] == body["candidate"]["id"]
    assert body["cv_history"]["crm_sync_status"] == "pending"
    assert scheduler.outstanding(uuid.UUID(body["cv_history"]["id"]))


async def test_quick_application_reuses_existing_candidate(client, sample_pdf_bytes):
    existing = await _create_candidate(client, email="known@example.com", first_name="Known")

    resp = await client.post(
        f"{API}/quick-application",
        data=_quick_form(email="Known@Example.com", first_name="Other"),
        files={"cv": ("second.pdf", sample_pdf_bytes, "application/pdf")},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["candidate_created"] is False
    assert body["candidate"]["id"] == existing["id"]
    assert body["candidate"]["first_name"] == "Known"

    cvs = (await client.get(f"{API}/{existing['id']}/cvs")).json()
    assert [cv["original_filename"] for cv in cvs] == ["second.pdf"]


async def test_quick_application_rejected_file_creates_nothing(client):
    form = _quick_form()
    resp = await client.post(
        f"{API}/quick-application",
        data=form,
        files={"cv": ("notes.txt", b"plain text", "text/plain")},
    )

    assert resp.status_code == 415
    listing = (await client.get(API, params={"search": form["email"]})).json()
    assert listing["total"] == 0


async def test_quick_application_short_phone_422(client, sample_pdf_bytes):
    resp = await client.post(
        f"{API}/quick-application",
        data=_quick_form(phone="123"),
        files={"cv": ("jane.pdf", sample_pdf_bytes, "application/pdf")},
    )

    assert resp.status_code == 422
