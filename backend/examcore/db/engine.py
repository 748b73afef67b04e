"""Database engine configuration."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from examcore.core.config import settings


def create_db_engine(url: str | None = None) -> Engine:
    """Create SQLAlchemy engine."""
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        # SQLite connections are shared across FastAPI's worker threads
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=settings.DATABASE_ECHO,
        )
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
        echo=settings.DATABASE_ECHO,
    )


# Global engine instance
engine = create_db_engine()
