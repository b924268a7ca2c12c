"""
Database Configuration and Session Management
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from shortage_sync.config import settings
from shortage_sync.errors import ConfigurationError
import logging

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine
engine = None
SessionLocal = None


def normalize_database_url(url: str) -> str:
    """Use the psycopg3 driver for plain postgresql:// URLs"""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def init_db(database_url: str = None):
    """
    Initialize database connection.

    Raises:
        ConfigurationError: DATABASE_URL is not configured
    """
    global engine, SessionLocal

    database_url = database_url or settings.database_url
    if not database_url:
        logger.error("DATABASE_URL not configured")
        raise ConfigurationError("DATABASE_URL is required")

    logger.info("Connecting to database...")
    engine = create_engine(
        normalize_database_url(database_url),
        pool_pre_ping=True,  # Verify connections before using them
        pool_size=5,
        max_overflow=10
    )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("Database connection established")
    return SessionLocal


# Base class for all models
Base = declarative_base()
