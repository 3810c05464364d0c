"""
Stockage local du scanner : SQLite via SQLAlchemy.
Remplace le stockage clé/valeur de l'appareil (une table `local_storage`).
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from scansync.config import settings

Base = declarative_base()


def make_engine(url: str = settings.STORAGE_URL) -> Engine:
    """Crée le moteur SQLite. check_same_thread=False : le scheduler tourne dans un thread dédié."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_storage(engine: Engine) -> None:
    """Crée les tables du stockage local si elles n'existent pas encore."""
    import scansync.models  # noqa: F401 (enregistre les modèles dans Base.metadata)

    Base.metadata.create_all(engine)
