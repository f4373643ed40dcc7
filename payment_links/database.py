from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from payment_links.config import DATABASE_URL


def build_engine(url: str):
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {}
    )


engine = build_engine(DATABASE_URL)


def build_session_factory(bind):
    # Entities outlive their unit of work, so keep loaded state after commit
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False)


SessionLocal = build_session_factory(engine)
Base = declarative_base()


@contextmanager
def unit_of_work(session_factory):
    """Yield a session whose writes commit together or not at all.

    Commits when the block exits normally, rolls back on any exception
    (business errors included) and always closes the session.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
