import io
from pathlib import Path

from app.vendorflow.db import session_scope
from app.vendorflow.modules.documents.models import Document


def _login(client, email: str, password: str = "pw"):
    return client.post("/auth/login", json={"email": email, "password": password})


def _as(app, email: str):
    c = app.test_client()
    r = _login(c, email)
    assert r.status_code == 200, r.json
    return c


def test_api_requires_login(client):
    r = client.get("/api/documents")
    assert r.status_code == 401
    assert r.json["error"]["code"] == "unauthenticated"

    r = _login(client, "admin@example.com", "wrong")
    assert r.status_code == 401
    assert r.json["error"]["code"] == "invalid_credentials"


def test_document_review_over_http(app, client):
    vendor = _as(app, "vendor@acme.example")
    consultant = _as(app, "casey@example.com")
    approver = _as(app, "approver@example.com")

    r = vendor.post(
        "/api/documents",
        data={"documentType": "INVOICE", "title": "March invoice", "files": (io.BytesIO(b"%PDF-1.4 test"), "march invoice.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201, r.json
    doc = r.json["document"]
    assert doc["status"] == "pending"
    assert doc["files"][0]["name"] == "march invoice.pdf"
    assert doc["files"][0]["path"].startswith(f"vendors/{doc['vendorId']}/INVOICE/")
    assert doc["files"][0]["size"] == len(b"%PDF-1.4 test")
    stored = Path(app.config["STORAGE_LOCAL_ROOT"]) / doc["files"][0]["path"]
    assert stored.read_bytes() == b"%PDF-1.4 test"
    doc_id = doc["id"]

    r = consultant.post(f"/api/documents/{doc_id}/transitions", json={"action": "begin_review"})
    assert r.status_code == 200
    r = consultant.post(f"/api/documents/{doc_id}/transitions", json={"action": "approve", "comment": "Looks good"})
    assert r.json["document"]["state"] == "under_review:cross_verification"

    r = approver.post(f"/api/documents/{doc_id}/transitions", json={"action": "approve"})
    assert r.status_code == 409
    assert r.json["error"]["code"] == "invalid_transition"
    assert r.json["error"]["details"]["currentState"] == "under_review:cross_verification"

    r = vendor.post(f"/api/documents/{doc_id}/transitions", json={"action": "reject"})
    assert r.status_code == 403
    assert r.json["error"]["code"] == "permission_denied"

    r = consultant.get(f"/api/documents/{doc_id}/audit")
    assert [e["action"] for e in r.json["events"]] == ["created", "reviewed", "approved"]
    assert r.json["events"][-1]["metadata"]["comment"] == "Looks good"

    r = vendor.get("/api/documents")
    assert [d["id"] for d in r.json["documents"]] == [doc_id]


def test_other_vendor_cannot_see_document(app, client):
    vendor = _as(app, "vendor@acme.example")
    other = _as(app, "vendor@globex.example")
    r = vendor.post(
        "/api/documents",
        json={"documentType": "ECR", "files": [{"path": "vendors/x/ecr.pdf", "name": "ecr.pdf", "mimeType": "application/pdf", "size": 3}]},
    )
    assert r.status_code == 201
    doc_id = r.json["document"]["id"]

    r = other.get(f"/api/documents/{doc_id}")
    assert r.status_code == 403
    assert "documentId" not in r.json["error"]["details"]
    assert other.get("/api/documents").json["documents"] == []

    r = other.get("/api/documents/9999")
    assert r.status_code == 404


def test_resubmission_over_http(app, client):
    vendor = _as(app, "vendor@acme.example")
    admin = _as(app, "admin@example.com")
    r = vendor.post("/api/documents", json={"documentType": "ECR", "files": [{"path": "k/ecr.pdf", "name": "ecr.pdf"}]})
    doc_id = r.json["document"]["id"]
    admin.post(f"/api/documents/{doc_id}/transitions", json={"action": "begin_review"})
    r = admin.post(f"/api/documents/{doc_id}/transitions", json={"action": "reject", "comment": "Illegible"})
    assert r.json["document"]["status"] == "rejected"

    r = vendor.post(f"/api/documents/{doc_id}/resubmit", json={"files": [{"path": "k/ecr-v2.pdf", "name": "ecr-v2.pdf"}]})
    assert r.status_code == 201
    new = r.json["document"]
    assert new["supersedesId"] == doc_id
    assert [f["name"] for f in new["files"]] == ["ecr-v2.pdf"]

    r = vendor.get(f"/api/documents/{new['id']}/chain")
    assert [d["id"] for d in r.json["documents"]] == [doc_id, new["id"]]

    with session_scope(app) as s:
        assert s.get(Document, doc_id).status == "rejected"


def test_vendor_login_approval_flow(app, client):
    r = _login(client, "vendor@initech.example")
    assert r.status_code == 202
    token = r.json["requestToken"]
    approval_id = r.json["approvalId"]

    r = _login(client, "vendor@initech.example")
    assert r.status_code == 409
    assert r.json["error"]["code"] == "duplicate_pending_approval"

    r = client.get(f"/auth/login-status/{token}")
    assert r.json["status"] == "pending"
    assert r.json["loggedIn"] is False
    assert client.get("/api/documents").status_code == 401

    consultant = _as(app, "omar@example.com")
    r = consultant.get("/api/login-approvals")
    assert [a["id"] for a in r.json["approvals"]] == [approval_id]

    vendor_session = _as(app, "vendor@acme.example")
    r = vendor_session.get("/api/login-approvals")
    assert r.status_code == 403

    r = consultant.post(f"/api/login-approvals/{approval_id}/decision", json={"decision": "approve"})
    assert r.status_code == 200
    assert r.json["approval"]["status"] == "approved"

    r = consultant.post(f"/api/login-approvals/{approval_id}/decision", json={"decision": "reject"})
    assert r.status_code == 409
    assert r.json["error"]["code"] == "already_decided"

    r = client.get(f"/auth/login-status/{token}")
    assert r.json["loggedIn"] is True
    assert r.json["user"]["firstLoginCompleted"] is True
    assert client.get("/api/documents").status_code == 200

    r = consultant.get(f"/api/login-approvals/{approval_id}/audit")
    assert [e["action"] for e in r.json["events"]] == ["login_requested", "login_approved"]

    # A fresh login inside the approval window goes straight through.
    fresh = app.test_client()
    assert _login(fresh, "vendor@initech.example").status_code == 200

    assert client.get("/auth/login-status/not-a-token").status_code == 404


def test_consultant_assignment_and_compliance_report(app, client, actors):
    admin = _as(app, "admin@example.com")
    consultant = _as(app, "casey@example.com")
    vendor = _as(app, "vendor@acme.example")

    initech_id, casey_id = actors["unassigned_vendor"].id, actors["consultant"].id

    r = consultant.put(f"/api/vendors/{initech_id}/consultant", json={"consultantId": casey_id})
    assert r.status_code == 403

    r = admin.put(f"/api/vendors/{initech_id}/consultant", json={"consultantId": casey_id})
    assert r.status_code == 200
    assert r.json["vendor"]["assignedConsultant"]["name"] == "Casey Consultant"

    r = consultant.get("/api/vendors")
    assert sorted(v["name"] for v in r.json["vendors"]) == ["Acme Vendor", "Initech Vendor"]

    r = consultant.get("/api/compliance/report?month=Jan&asOf=2026-01-20")
    assert r.status_code == 200
    assert r.json["summary"]["totalVendors"] == 2
    assert r.json["month"] == "January"

    r = admin.get("/api/compliance/report?month=Feb")
    assert r.json["summary"]["totalVendors"] == 3
    assert r.json["summary"]["averageDaysSinceUpload"] == 0

    r = vendor.get("/api/compliance/report")
    assert r.status_code == 403

    r = vendor.get(f"/api/compliance/vendors/{initech_id}")
    assert r.status_code == 403
    r = consultant.get(f"/api/compliance/vendors/{initech_id}")
    assert r.json["vendor"]["status"] == "NonCompliant"
    assert r.json["vendor"]["assignedConsultant"] == "Casey Consultant"

    r = admin.get("/api/compliance/report?month=Smarch")
    assert r.status_code == 400


def test_rejected_upload_leaves_no_orphaned_file(app, client):
    vendor = _as(app, "vendor@acme.example")
    r = vendor.post("/api/documents", json={"documentType": "ECR", "files": [{"path": "k/ecr.pdf", "name": "ecr.pdf"}]})
    doc = r.json["document"]

    # Files can only be added while the document is a draft.
    r = vendor.post(
        f"/api/documents/{doc['id']}/files",
        data={"files": (io.BytesIO(b"late page"), "page2.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 409
    vendor_dir = Path(app.config["STORAGE_LOCAL_ROOT"]) / "vendors" / str(doc["vendorId"])
    assert not any(p.is_file() for p in vendor_dir.rglob("*"))

    r = vendor.post("/api/documents", data={"documentType": "ECR", "draft": "true"}, content_type="multipart/form-data")
    draft_id = r.json["document"]["id"]
    assert r.json["document"]["status"] == "draft"
    r = vendor.post(
        f"/api/documents/{draft_id}/files",
        data={"files": (io.BytesIO(b"page one"), "page1.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert [f["name"] for f in r.json["document"]["files"]] == ["page1.pdf"]
    r = vendor.post(f"/api/documents/{draft_id}/transitions", json={"action": "submit"})
    assert r.json["document"]["status"] == "pending"


def test_compliance_report_rejects_bad_reference_date(app, client):
    admin = _as(app, "admin@example.com")
    r = admin.get("/api/compliance/report?asOf=31/01/2026")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "invalid_request"


def test_uploaded_file_can_be_downloaded_by_viewers(app, client):
    vendor = _as(app, "vendor@acme.example")
    other = _as(app, "vendor@globex.example")
    r = vendor.post(
        "/api/documents",
        data={"documentType": "INVOICE", "files": (io.BytesIO(b"%PDF-1.4 april"), "april.pdf")},
        content_type="multipart/form-data",
    )
    doc = r.json["document"]
    url = f"/api/documents/{doc['id']}/files/{doc['files'][0]['id']}"

    r = vendor.get(url)
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 april"
    assert r.headers["Content-Disposition"].startswith("attachment")
    assert "april.pdf" in r.headers["Content-Disposition"]

    assert other.get(url).status_code == 403
    assert vendor.get(f"/api/documents/{doc['id']}/files/9999").status_code == 404

    # Metadata-only attachments have no bytes behind them.
    r = vendor.post("/api/documents", json={"documentType": "ECR", "files": [{"path": "k/ecr.pdf", "name": "ecr.pdf"}]})
    meta = r.json["document"]
    r = vendor.get(f"/api/documents/{meta['id']}/files/{meta['files'][0]['id']}")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "not_found"


def test_malformed_document_input_is_rejected(app, client):
    vendor = _as(app, "vendor@acme.example")
    r = vendor.post(
        "/api/documents",
        json={"documentType": "ECR", "files": [{"path": "k/ecr.pdf", "name": "ecr.pdf", "size": "big"}]},
    )
    assert r.status_code == 400
    assert r.json["error"]["code"] == "invalid_request"
    r = vendor.post("/api/documents", json={"documentType": "ECR", "files": [{"path": "k/ecr.pdf", "size": -1}]})
    assert r.status_code == 400

    r = vendor.post("/api/documents", json={"documentType": "ECR", "files": [{"path": "k/ecr.pdf", "size": "12"}]})
    assert r.status_code == 201
    doc_id = r.json["document"]["id"]
    assert r.json["document"]["files"][0]["size"] == 12

    for body in ({"action": 5}, {"action": ["approve"]}, {"action": "approve", "comment": {"text": "ok"}}):
        r = vendor.post(f"/api/documents/{doc_id}/transitions", json=body)
        assert r.status_code == 400
        assert r.json["error"]["code"] == "invalid_request"
    r = vendor.post(f"/api/documents/{doc_id}/transitions", json=["submit"])
    assert r.status_code == 400


def test_document_types_flag_mandatory_for_month(app, client):
    vendor = _as(app, "vendor@acme.example")
    jan = {t["id"]: t for t in vendor.get("/api/document-types?month=Jan").json["documentTypes"]}
    feb = {t["id"]: t for t in vendor.get("/api/document-types?month=2").json["documentTypes"]}
    assert jan["LABOUR_WELFARE_FUND"]["mandatory"] is True
    assert feb["LABOUR_WELFARE_FUND"]["mandatory"] is False
    assert jan["INVOICE"]["mandatory"] is feb["INVOICE"]["mandatory"] is True
    assert jan["VENDOR_AGREEMENT"]["oneTimeOptional"] is True
    assert jan["INVOICE"]["oneTimeOptional"] is False
    assert vendor.get("/api/document-types?month=Smarch").status_code == 400


def test_admin_activity_log(app, client, actors):
    vendor = _as(app, "vendor@acme.example")
    consultant = _as(app, "casey@example.com")
    admin = _as(app, "admin@example.com")
    r = vendor.post("/api/documents", json={"documentType": "ECR", "files": [{"path": "k/ecr.pdf", "name": "ecr.pdf"}]})
    doc_id = r.json["document"]["id"]
    consultant.post(f"/api/documents/{doc_id}/transitions", json={"action": "begin_review"})
    consultant.post(f"/api/documents/{doc_id}/comments", json={"comment": "Checking totals"})

    r = admin.get("/api/activity")
    assert r.status_code == 200
    assert r.json["counts"] == {"created": 1, "reviewed": 1, "commented": 1}
    assert admin.get("/api/activity?since=2999-01-01").json["counts"] == {}
    assert admin.get("/api/activity?since=yesterday").status_code == 400

    r = admin.get(f"/api/activity/users/{actors['consultant'].id}")
    assert r.json["user"]["name"] == "Casey Consultant"
    assert [e["action"] for e in r.json["events"]] == ["commented", "reviewed"]
    r = admin.get(f"/api/activity/users/{actors['consultant'].id}?limit=1")
    assert [e["action"] for e in r.json["events"]] == ["commented"]
    assert admin.get("/api/activity/users/9999").status_code == 404

    assert consultant.get("/api/activity").status_code == 403
    assert vendor.get(f"/api/activity/users/{actors['vendor'].id}").status_code == 403
    assert client.get("/api/activity").status_code == 401
