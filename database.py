from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

import config

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL

# Heroku/Railway/Supabase style URLs: postgres:// -> postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is empty")

# Log connection target (redacted)
safe_url = DATABASE_URL.split("@")[-1] if "@" in DATABASE_URL else "local/sqlite"
logger.info("Connecting to: ...@%s", safe_url)


def build_engine(url):
    """Create an engine; SQLite needs cross-thread access and FK enforcement."""
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables that do not exist yet."""
    import models  # noqa: F401  (registers tables on Base.metadata)
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database initialized")


def describe_backend(bind=None):
    """'postgresql' or 'sqlite', as reported by the health endpoint."""
    name = (bind or engine).dialect.name
    return "postgresql" if name == "postgresql" else name
