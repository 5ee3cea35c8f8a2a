from typing import Callable, Iterator, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from plantops.settings import settings

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, echo=False, connect_args=_connect_args)


def init_db(*, bind: Optional[Engine] = None) -> None:
    """Create database tables on startup so a fresh environment boots cleanly."""
    # Register every table on the shared metadata before create_all.
    from plantops.audit import models as _audit_models  # noqa: F401
    from plantops.auth import user_model as _user_model  # noqa: F401
    from plantops.permissions import models as _permission_models  # noqa: F401
    from plantops.plant import models as _plant_models  # noqa: F401

    SQLModel.metadata.create_all(bind=bind or engine)


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session


def session_factory() -> Session:
    return Session(engine)


SessionFactory = Callable[[], Session]
