import pytest
from werkzeug.security import generate_password_hash

from app.vendorflow import create_app
from app.vendorflow.db import session_scope
from app.vendorflow.models import Base, User
from app.vendorflow.rbac import Actor


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in (
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "LOGIN_APPROVAL_TTL_HOURS",
        "COMPLIANCE_WINDOW_DAYS",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def actors(app):
    """
    Seeds one user per role plus three vendors:
    - vendor: assigned to consultant
    - other_vendor: assigned to other_consultant
    - unassigned_vendor: no consultant, requires login approval
    """
    pw = generate_password_hash("pw")
    with session_scope(app) as s:
        staff = {
            "admin": User(email="admin@example.com", name="Ada Admin", password_hash=pw, role="admin"),
            "consultant": User(email="casey@example.com", name="Casey Consultant", password_hash=pw, role="consultant"),
            "other_consultant": User(email="omar@example.com", name="Omar Consultant", password_hash=pw, role="consultant"),
            "cross_verifier": User(email="cv@example.com", name="Cleo Verifier", password_hash=pw, role="cross_verifier"),
            "approver": User(email="approver@example.com", name="Avery Approver", password_hash=pw, role="approver"),
            "legacy": User(email="legacy@example.com", name="Legacy Account", password_hash=pw, role="imtma"),
        }
        s.add_all(staff.values())
        s.flush()
        vendors = {
            "vendor": User(
                email="vendor@acme.example",
                name="Acme Vendor",
                company="Acme Staffing",
                password_hash=pw,
                role="vendor",
                assigned_consultant_id=staff["consultant"].id,
            ),
            "other_vendor": User(
                email="vendor@globex.example",
                name="Globex Vendor",
                company="Globex",
                password_hash=pw,
                role="vendor",
                assigned_consultant_id=staff["other_consultant"].id,
            ),
            "unassigned_vendor": User(
                email="vendor@initech.example",
                name="Initech Vendor",
                company="Initech",
                password_hash=pw,
                role="vendor",
                requires_login_approval=True,
            ),
        }
        s.add_all(vendors.values())
        s.flush()
        return {key: Actor(id=u.id, role=u.role, name=u.name) for key, u in {**staff, **vendors}.items()}


@pytest.fixture()
def client(app, actors):
    return app.test_client()
