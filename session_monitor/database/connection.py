"""
Database connection and session management
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
import structlog
from session_monitor.core.config import settings

logger = structlog.get_logger(__name__)


def create_database_engine(database_url: str, echo: bool = False):
    """Create an engine; SQLite connections may be used from worker threads"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        pool_pre_ping=True,
        echo=echo,
        connect_args=connect_args,
    )


# Create database engine
engine = create_database_engine(settings.database_url, echo=settings.debug)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create base class for models
Base = declarative_base()


def get_database() -> Session:
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_database(bind=None):
    """Initialize database tables"""
    try:
        # Import all models to ensure they are registered
        from session_monitor.models import device, session, event_log  # noqa

        # Create all tables
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        raise
