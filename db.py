# db.py
import os
from contextlib import contextmanager

from neo4j import GraphDatabase
from sqlalchemy import create_engine


_engine = None
_driver = None


def _normalize_database_url(database_url: str) -> str:
    # Force the drivers we ship with if someone pasted a bare scheme
    if database_url.startswith("mysql://"):
        return "mysql+pymysql://" + database_url[len("mysql://"):]
    if database_url.startswith("postgres://"):
        return "postgresql+psycopg2://" + database_url[len("postgres://"):]
    if database_url.startswith("postgresql://"):
        return "postgresql+psycopg2://" + database_url[len("postgresql://"):]
    return database_url


def get_engine():
    global _engine
    if _engine is None:
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set")
        _engine = create_engine(
            _normalize_database_url(database_url),
            pool_pre_ping=True,
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE_S", "1800")),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "5")),
            future=True,
        )
    return _engine


def get_graph_driver():
    """Lazily build the Neo4j driver (one pooled driver per process)."""
    global _driver
    if _driver is None:
        uri = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        user = os.getenv("NEO4J_USER", "neo4j")
        password = os.getenv("NEO4J_PASSWORD", "password")
        _driver = GraphDatabase.driver(uri, auth=(user, password))
    return _driver


@contextmanager
def graph_session():
    """
    Yield a Neo4j session that is always closed, whatever the outcome of
    the block.
    """
    database = os.getenv("NEO4J_DATABASE") or None
    session = get_graph_driver().session(database=database)
    try:
        yield session
    finally:
        session.close()


def identity_repository():
    from services.identities import IdentityRepository
    return IdentityRepository(get_engine())


def close_all():
    global _engine, _driver
    if _driver is not None:
        _driver.close()
        _driver = None
    if _engine is not None:
        _engine.dispose()
        _engine = None
