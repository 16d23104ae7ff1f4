from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy import event
from sqlalchemy.engine import Engine
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL
IS_SQLITE = DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Serverless Postgres drops idle connections
        pool_recycle=300,
        pool_timeout=30,
        connect_args={"connect_timeout": 10},
    )


@event.listens_for(Engine, "connect")
def set_statement_timeout(dbapi_connection, connection_record):
    """Cap query time on Postgres so a slow batch query cannot hang a cron run."""
    if dbapi_connection.__class__.__module__.startswith("sqlite3"):
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("SET statement_timeout = '30s'")
    except Exception as e:
        logger.warning(f"Could not set statement timeout: {e}")
    finally:
        cursor.close()


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    import app.models  # noqa: F401  (register tables on the metadata)

    SQLModel.metadata.create_all(engine)
