"""
Synchronous database connection (used by Celery tasks)
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from summarizer.core.config import settings

sync_engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(
    bind=sync_engine,
    autocommit=False,
    autoflush=False,
)


def get_sync_db():
    """Yield a synchronous database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
