from __future__ import annotations

import os

os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from typing import Callable, Dict, Iterator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, create_engine  # noqa: E402

from plantops.auth.jwt_handler import create_access_token  # noqa: E402
from plantops.auth.roles import UserRole  # noqa: E402
from plantops.auth.user_model import User  # noqa: E402
from plantops.db import get_session, init_db  # noqa: E402
from plantops.main import app  # noqa: E402
from plantops.permissions.service import clear_permission_cache  # noqa: E402
from plantops.session.router import get_session_factory  # noqa: E402


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine) -> Iterator[Session]:
    with Session(engine) as session:
        yield session


@pytest.fixture(autouse=True)
def _reset_permission_cache():
    clear_permission_cache()
    yield
    clear_permission_cache()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine) -> Callable[[], Session]:
    return lambda: Session(engine)


@pytest.fixture(name="client")
def client_fixture(engine, session_factory) -> Iterator[TestClient]:
    def _get_session() -> Iterator[Session]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(name="make_user")
def make_user_fixture(session: Session) -> Callable[..., User]:
    def _make_user(
        username: str,
        role: UserRole = UserRole.GUEST,
        *,
        is_active: bool = True,
        hashed_password: str = "x",
    ) -> User:
        user = User(
            username=username,
            full_name=username.title(),
            hashed_password=hashed_password,
            role=role.value,
            is_active=is_active,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.username})}"}


@pytest.fixture(name="headers_for")
def headers_for_fixture() -> Callable[[User], Dict[str, str]]:
    return auth_headers


@pytest.fixture(name="admin")
def admin_fixture(make_user) -> User:
    return make_user("root", UserRole.SUPER_ADMIN)


@pytest.fixture(name="admin_headers")
def admin_headers_fixture(admin: User) -> Dict[str, str]:
    return auth_headers(admin)
