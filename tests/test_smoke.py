def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").status_code == 200


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


def test_login_me_logout(client):
    # Anonymous is rejected
    r = client.get("/auth/me")
    assert r.status_code == 401

    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "admin"

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "admin@example.com"

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_unknown_route_is_json_404(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "not_found"


def test_document_types_listing(client):
    client.post("/auth/login", json={"email": "vendor@acme.example", "password": "pw"})
    r = client.get("/api/document-types")
    ids = [t["id"] for t in r.json["documentTypes"]]
    assert "INVOICE" in ids
    assert "LABOUR_WELFARE_FUND" in ids
