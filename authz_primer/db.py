import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import text
from sqlmodel import SQLModel, Session, create_engine, select

from .constants import DEFAULT_DATABASE_URL, DEMO_DOCUMENTS, DEMO_USERNAME
from .models import Document, User

logger = logging.getLogger(__name__)


def init_db(database_url: str = DEFAULT_DATABASE_URL):
    """Create and return the SQLAlchemy engine. Creates the SQLite directory and all tables."""
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        dirpath = os.path.dirname(database_url[len("sqlite:///"):])
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)

    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, echo=False, connect_args=connect_args)

    if database_url.startswith("sqlite") and ":memory:" not in database_url:
        try:
            with engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
        except Exception as e:
            logger.debug("Unable to set SQLite pragmas: %s", e)

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready at %s", database_url)
    return engine


@contextmanager
def session_scope(engine) -> Iterator[Session]:
    """Yield a short-lived `Session` bound to `engine`. The caller commits; the session is always closed."""
    sess = Session(engine)
    logger.debug("Opening DB session %s", sess)
    try:
        yield sess
    finally:
        try:
            sess.close()
            logger.debug("Closed DB session %s", sess)
        except Exception as e:
            logger.exception("Failed to close DB session: %s", e)


def get_user_by_username(session: Session, username: str) -> Optional[User]:
    return session.exec(select(User).where(User.username == username)).first()


def get_document(session: Session, document_id: int) -> Optional[Document]:
    return session.get(Document, document_id)


def seed_demo_data(engine) -> bool:
    """Insert the demo user and documents when the database has no users. Returns True if seeded."""
    with session_scope(engine) as session:
        if session.exec(select(User)).first() is not None:
            return False
        user = User(username=DEMO_USERNAME)
        session.add(user)
        session.commit()
        session.refresh(user)
        for title, content in DEMO_DOCUMENTS:
            session.add(Document(title=title, content=content, author_id=user.id))
        session.commit()
    logger.info("Seeded demo user '%s' with %d documents", DEMO_USERNAME, len(DEMO_DOCUMENTS))
    return True
