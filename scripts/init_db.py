import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import select
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.vendorflow.db import build_engine  # noqa: E402
from app.vendorflow.models import Base, User  # noqa: E402
from scripts._db_utils import database_url, script_session  # noqa: E402


def create_schema(db_url: str) -> None:
    """Create missing tables. Prefer `alembic upgrade head` for real deployments."""
    engine = build_engine(db_url)
    try:
        Base.metadata.create_all(engine)
    finally:
        engine.dispose()


def seed_only(*, database_url_override: str | None = None) -> None:
    """
    Seed the admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@vendorflow.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    with script_session(database_url(database_url_override)) as s:
        user = s.execute(select(User).where(User.email == admin_email)).scalar_one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Administrator",
                password_hash=generate_password_hash(admin_password),
                role="admin",
                is_active=True,
            )
            s.add(user)
        elif user.role != "admin":
            user.role = "admin"

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    load_dotenv()
    ap = argparse.ArgumentParser(description="Create tables and seed the admin user.")
    ap.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    ap.add_argument("--seed-only", action="store_true", help="Skip create_all (schema managed by alembic)")
    args = ap.parse_args()

    db_url = database_url(args.database_url)
    if not args.seed_only:
        create_schema(db_url)
    seed_only(database_url_override=db_url)


if __name__ == "__main__":
    main()
