"""
Database — Connexion centralisée (SQLAlchemy).

SQLite en développement / tests, PostgreSQL en production.
Usage:
    from agrilo.core.database import get_db, init_db
"""

import logging
from contextlib import contextmanager
from typing import Generator, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agrilo.core.settings import settings

logger = logging.getLogger(__name__)

# ---------- Engine (créé une seule fois au démarrage) ----------

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # une seule connexion partagée, sinon chaque session voit une base vide
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_size=10, max_overflow=20, pool_pre_ping=True)


def init_db(url: Optional[str] = None) -> Engine:
    """Initialise le moteur, la session factory et le schéma. Appelé au startup FastAPI."""
    global _engine, _SessionLocal
    from agrilo.services.models import Base

    url = url or settings.DATABASE_URL
    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(url)
    _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(_engine, checkfirst=True)
    logger.info("Database engine initialisé (%s).", _engine.url.get_backend_name())
    return _engine


def close_db() -> None:
    """Ferme proprement le pool de connexions. Appelé au shutdown FastAPI."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
        logger.info("Database engine fermé.")
    _engine = None
    _SessionLocal = None


def get_session_factory() -> sessionmaker:
    if _SessionLocal is None:
        raise RuntimeError("Database non initialisée. Appelez init_db() d'abord.")
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Dependency FastAPI :
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session transactionnelle hors requête HTTP (jobs cron, scripts)."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def check_connection() -> bool:
    """Vérifie que la base est accessible."""
    if _engine is None:
        return False
    try:
        with _engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("DB health check échoué: %s", e)
        return False
