"""
Database Connection Management for VaultPilot

Engine construction (PostgreSQL in production, SQLite for local runs and
tests), the process-wide session factory behind Store.from_config(), and
table creation for `main.py db init`.
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vaultpilot.config import load_config
from vaultpilot.utils import get_logger

logger = get_logger(__name__)

# Process-wide engine and session factory (built on first use)
_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


def build_database_url(config) -> str:
    """
    SQLAlchemy URL from the 'database' config section

    'database.url' wins when set (e.g. sqlite:///data/vaultpilot.db);
    otherwise a PostgreSQL URL is assembled from user/password/host/port/database.
    """
    url = config.get('database.url')
    if url:
        return url

    user = config.get_required('database.user')
    password = config.get('database.password') or ''
    host = config.get_required('database.host')
    port = config.get_required('database.port')
    name = config.get_required('database.database')

    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


def create_db_engine(url: str, config=None) -> Engine:
    """
    Engine for a URL

    SQLite in-memory URLs share one connection across threads (tracker
    workers, API background tasks). Server databases get a pre-pinged pool
    sized from 'database.pool'.
    """
    if url.startswith('sqlite'):
        if url in ('sqlite://', 'sqlite:///:memory:'):
            return create_engine(url, connect_args={'check_same_thread': False}, poolclass=StaticPool)
        return create_engine(url, connect_args={'check_same_thread': False})

    min_conn = config.get('database.pool.min_connections', 2) if config else 2
    max_conn = config.get('database.pool.max_connections', 10) if config else 10
    recycle = config.get('database.pool.pool_recycle', 3600) if config else 3600

    return create_engine(
        url,
        pool_size=min_conn,
        max_overflow=max(0, max_conn - min_conn),
        pool_recycle=recycle,
        pool_pre_ping=True,  # Drop dead connections before use
    )


def get_engine() -> Engine:
    """Process-wide engine built from config (singleton)"""
    global _engine

    if _engine is None:
        config = load_config()
        _engine = create_db_engine(build_database_url(config), config)
        logger.info(f"Database engine created: {_engine.url.render_as_string(hide_password=True)}")

    return _engine


def get_session_factory() -> sessionmaker:
    """Process-wide session factory (singleton, objects stay readable after commit)"""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)
        logger.debug("Session factory created")

    return _SessionFactory


def init_db() -> None:
    """
    Create all tables on the configured database

    Note: For production, use Alembic migrations instead.
    """
    from .models import Base

    Base.metadata.create_all(get_engine())
    logger.info("Database tables created/verified")
