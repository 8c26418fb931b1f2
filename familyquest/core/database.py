"""
SQL backing for the document store.

One ``documents`` table holds every collection. Each row carries the JSON
body plus a version counter used for optimistic concurrency.
"""
from typing import Optional
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, JSON, Index, UniqueConstraint
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from familyquest.core.config import settings

logger = logging.getLogger("familyquest")

metadata = MetaData()

# Pool sizing for server databases (sqlite always gets one shared connection)
POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_TIMEOUT = 30
POOL_RECYCLE = 1800

_engine = None
_SessionLocal = None


documents = Table(
    'documents',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('collection', String(50), nullable=False),
    Column('doc_id', String(100), nullable=False),
    Column('version', Integer, nullable=False),
    # Copied out of body so member lookups use the index
    Column('family_id', String(100), nullable=True),
    Column('body', JSON, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('collection', 'doc_id', name='uq_documents_collection_doc'),
    Index('idx_documents_collection_family', 'collection', 'family_id'),
)


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL wins over DATABASE_URL; None means no SQL store."""
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    global _engine, _SessionLocal

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set it in the environment or .env file.")

    if url.startswith("sqlite"):
        # In-memory sqlite only lives as long as its single connection
        _engine = create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
        )

    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    logger.info("document database engine ready", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine():
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def create_all_tables():
    """Idempotent: existing tables are left alone."""
    metadata.create_all(bind=get_engine())


def reset_database():
    """Drop and recreate the documents table. Tests and local development only."""
    metadata.drop_all(bind=get_engine())
    metadata.create_all(bind=get_engine())


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False
