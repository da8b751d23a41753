from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from keeva.core.config import settings


def make_engine(url: str):
    # SQLite connections are shared across FastAPI's threadpool
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


def make_session_factory(bind):
    # Orders are handed back to callers after commit, keep attributes loaded
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = make_session_factory(engine)
Base = declarative_base()
