from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from advisor.core.config import settings


def make_engine(url: str) -> Engine:
    """Engine for ``url``. SQLite connections get foreign keys enforced."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=settings.debug, pool_pre_ping=True)

    sqlite_engine = create_engine(url, echo=settings.debug, connect_args={"check_same_thread": False})

    @event.listens_for(sqlite_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


engine = make_engine(settings.database_url or f"sqlite:///{settings.db_path}")


def init_db() -> None:
    import advisor.models  # noqa: F401 - ensure models are registered
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
