import os
import tempfile
from collections.abc import Generator
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="admissions-workflow-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_ROOT / 'test.db'}")
os.environ.setdefault("DOCUMENT_STORAGE_ROOT", str(_TEST_ROOT / "documents"))
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-suite")
os.environ.setdefault("FIRST_SUPERUSER_PASSWORD", "super-secret-password")

import pytest  # noqa: E402
from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from app.core.config import settings  # noqa: E402
from app.core.db import engine, init_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Program, UserRole  # noqa: E402
from tests.utils.user import authentication_token_from_email  # noqa: E402
from tests.utils.utils import get_superuser_token_headers  # noqa: E402

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


@pytest.fixture(scope="session")
def db() -> Generator[Session, None, None]:
    # Ensure schema is up to date before any test touches the DB.
    alembic_cfg = Config(str(ALEMBIC_INI))
    command.upgrade(alembic_cfg, "head")

    with Session(engine) as session:
        init_db(session)
        yield session


@pytest.fixture(scope="session")
def program(db: Session) -> Program:
    program = Program(
        name="MSc Data Science",
        university_name="Heriot-Watt University Dubai",
        degree_level="Master's Degree",
        study_field="Computer Science & IT",
    )
    db.add(program)
    db.commit()
    db.refresh(program)
    return program


@pytest.fixture(scope="session")
def bachelor_program(db: Session) -> Program:
    program = Program(
        name="BBA Business Administration",
        university_name="University of Wollongong in Dubai",
        degree_level="Bachelor's Degree",
        study_field="Business & Management",
    )
    db.add(program)
    db.commit()
    db.refresh(program)
    return program


@pytest.fixture(scope="module")
def client(db: Session) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="module")
def superuser_token_headers(client: TestClient) -> dict[str, str]:
    return get_superuser_token_headers(client)


@pytest.fixture(scope="module")
def admin_token_headers(client: TestClient, db: Session) -> dict[str, str]:
    return authentication_token_from_email(
        client=client, email="admin-reviewer@example.com", db=db, role=UserRole.ADMIN
    )


@pytest.fixture(scope="module")
def sub_admin_token_headers(client: TestClient, db: Session) -> dict[str, str]:
    return authentication_token_from_email(
        client=client, email="sub-admin@example.com", db=db, role=UserRole.SUB_ADMIN
    )


@pytest.fixture(scope="module")
def agent_token_headers(client: TestClient, db: Session) -> dict[str, str]:
    return authentication_token_from_email(
        client=client, email=settings.EMAIL_TEST_USER, db=db, role=UserRole.AGENT
    )


@pytest.fixture(scope="module")
def other_agent_token_headers(client: TestClient, db: Session) -> dict[str, str]:
    return authentication_token_from_email(
        client=client, email="other-agent@example.com", db=db, role=UserRole.AGENT
    )
