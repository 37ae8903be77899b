import pytest

from app.vendorflow.config import Settings, load_config, load_settings


def test_defaults_and_overrides(monkeypatch):
    for k in ("LOGIN_APPROVAL_TTL_HOURS", "COMPLIANCE_WINDOW_DAYS", "STORAGE_BACKEND", "ENV"):
        monkeypatch.delenv(k, raising=False)
    s = load_settings()
    assert s.login_approval_ttl_hours == 24
    assert s.compliance_window_days == 30
    assert s.storage_backend == "local"

    monkeypatch.setenv("LOGIN_APPROVAL_TTL_HOURS", "12")
    monkeypatch.setenv("STORAGE_BACKEND", "S3")
    s = load_settings()
    assert s.login_approval_ttl_hours == 12
    assert s.storage_backend == "s3"


@pytest.mark.parametrize("raw", ["soon", "0", "-3"])
def test_bad_window_fails_fast(monkeypatch, raw):
    monkeypatch.setenv("COMPLIANCE_WINDOW_DAYS", raw)
    with pytest.raises(RuntimeError, match="COMPLIANCE_WINDOW_DAYS"):
        load_settings()


def test_production_guardrails():
    with pytest.raises(RuntimeError, match="Postgres"):
        load_config(Settings(env="production", secret_key="s3cret"))
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        load_config(Settings(env="prod", database_url="postgresql://db/vendorflow"))
    with pytest.raises(RuntimeError, match="STORAGE_BACKEND"):
        load_config(Settings(storage_backend="ftp"))

    cfg = load_config(Settings(env="production", secret_key="s3cret", database_url="postgresql://db/vendorflow"))
    assert cfg["SESSION_COOKIE_SECURE"] is True
    assert cfg["COMPLIANCE_WINDOW_DAYS"] == 30
