"""HTTP surface through FastAPI's TestClient."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import USER_ID
from coreflow.api import create_app
from coreflow.api.auth import create_token


@pytest.fixture
def client(config, sender):
    app = create_app(config, sender=sender, start_scheduler=False)
    token = create_token(config, USER_ID, "rita@acme.test")
    c = TestClient(app)
    c.headers.update({"Authorization": f"Bearer {token}"})
    c.put("/api/profile", json={"name": "Rita", "email": "rita@acme.test", "company": "Acme"})
    yield c
    app.state.services.db.close()


def _template(client, type_, subject="Hello {candidate_name}", content="Body"):
    resp = client.post("/api/templates", json={"name": type_, "type": type_, "subject": subject, "content": content})
    assert resp.status_code == 201
    return resp.json()


def _workflow(client, stage, template_id, **extra):
    resp = client.post(
        "/api/workflows",
        json={"name": f"{stage} wf", "trigger_stage": stage, "email_template_id": template_id, **extra},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_bearer_token(config):
    app = create_app(config, start_scheduler=False)
    anonymous = TestClient(app)
    assert anonymous.get("/api/candidates").status_code in (401, 403)
    bad = anonymous.get("/api/candidates", headers={"Authorization": "Bearer nonsense"})
    assert bad.status_code == 401
    app.state.services.db.close()


def test_candidate_lifecycle(client, sender):
    tpl = _template(client, "Screening")
    _workflow(client, "Screening", tpl["id"])

    created = client.post("/api/candidates", json={"name": "Dee", "email": "dee@example.com"})
    assert created.status_code == 201
    cid = created.json()["id"]
    assert created.json()["stage"] == "New"

    rejected = client.post(f"/api/candidates/{cid}/stage", json={"stage": "Screening"})
    assert rejected.status_code == 400
    assert rejected.json()["error"]["code"] == "TRANSITION_REJECTED"

    uploaded = client.post(f"/api/candidates/{cid}/cv-uploaded", json={"cv_file_url": "https://cdn/cv.pdf"})
    assert uploaded.json()["stage"] == "Screening"
    assert sender.sent[0].subject == "Hello Dee"

    executions = client.get("/api/workflows/executions", params={"candidate_id": cid}).json()
    assert [e["status"] for e in executions] == ["sent"]


def test_unknown_candidate_is_404(client):
    resp = client.get("/api/candidates/missing")
    assert resp.status_code == 404
    assert resp.json() == {"error": {"code": "NOT_FOUND", "message": "Candidate not found"}}


def test_duplicate_enabled_workflow_is_400(client):
    tpl = _template(client, "Hired")
    _workflow(client, "Hired", tpl["id"])
    resp = client.post(
        "/api/workflows",
        json={"name": "again", "trigger_stage": "Hired", "email_template_id": tpl["id"]},
    )
    assert resp.status_code == 400


def test_templates_for_stage(client):
    _template(client, "Offer")
    _template(client, "Offer Accepted")
    resp = client.get("/api/templates/for-stage/Offer")
    assert [t["type"] for t in resp.json()["templates"]] == ["Offer"]
    assert resp.json()["invalid_selection_warning"] is False


def test_reschedule_and_email_history(client, sender):
    _template(client, "Reschedule", subject="Rescheduled", content="Now {new_interview_time}")
    created = client.post("/api/candidates", json={"name": "Dee", "email": "dee@example.com"})
    cid = created.json()["id"]

    too_early = client.post(
        f"/api/candidates/{cid}/interview/reschedule", json={"date": "May 4", "time": "2:00 PM"},
    )
    assert too_early.status_code == 400

    client.post(f"/api/candidates/{cid}/cv-uploaded", json={"cv_file_url": "https://cdn/cv.pdf"})
    moved = client.post(f"/api/candidates/{cid}/stage", json={"stage": "Interview"})
    assert moved.json()["stage"] == "Interview"

    resp = client.post(
        f"/api/candidates/{cid}/interview/reschedule",
        json={"date": "May 4", "time": "2:00 PM", "old_date": "May 2", "old_time": "10:00 AM"},
    )
    assert resp.status_code == 200
    assert resp.json()["email_type"] == "Reschedule"
    assert sender.sent[-1].body == "Now May 4 at 2:00 PM"

    history = client.get(f"/api/candidates/{cid}/emails").json()
    assert [e["subject"] for e in history] == ["Rescheduled"]
    assert client.get("/api/candidates/missing/emails").status_code == 404


def test_workflow_test_send(client, sender):
    tpl = _template(client, "Rejection", subject="Update for {candidate_name}")
    wf = _workflow(client, "Rejected", tpl["id"])
    resp = client.post(f"/api/workflows/{wf['id']}/test")
    assert resp.status_code == 200
    assert sender.sent[0].subject == "[TEST] Update for John Doe"
    assert sender.sent[0].to == "rita@acme.test"


def test_offer_flow_through_public_routes(client, sender):
    tpl = _template(client, "Offer", subject="Offer", content="We offer {salary}.")
    _workflow(client, "Offer", tpl["id"])
    job = client.post("/api/jobs", json={"title": "Engineer", "company": "Acme"}).json()
    cid = client.post("/api/candidates", json={"name": "Eve", "email": "eve@example.com"}).json()["id"]

    offer = client.post(
        "/api/offers",
        json={"candidate_id": cid, "job_id": job["id"], "position_title": "Engineer", "salary_amount": 90000},
    ).json()
    sent = client.post(f"/api/offers/{offer['id']}/send").json()
    token = sent["offer_token"]
    assert sent["status"] == "sent"

    public = TestClient(client.app)
    viewed = public.get(f"/api/public/offers/{token}")
    assert viewed.status_code == 200
    assert viewed.json()["status"] == "viewed"
    assert "notes" not in viewed.json()

    countered = public.post(f"/api/public/offers/{token}/counter", json={"salary_amount": 100000})
    assert countered.json()["status"] == "negotiating"
    assert countered.json()["salary_amount"] == 90000

    accepted = client.post(f"/api/offers/{offer['id']}/counter/accept")
    assert accepted.json()["status"] == "accepted"
    assert accepted.json()["salary_amount"] == 100000
    assert client.get(f"/api/candidates/{cid}").json()["stage"] == "Hired"

    again = public.post(f"/api/public/offers/{token}/accept")
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "ALREADY_RESPONDED"


def test_unknown_offer_token_is_404(client):
    public = TestClient(client.app)
    assert public.post("/api/public/offers/nope/accept").status_code == 404
