"""
Stockage clé/valeur local au-dessus de SQLite.

Chaque écriture est une transaction commitée : soit la nouvelle valeur est
entièrement présente après un arrêt brutal, soit l'ancienne est conservée.
Les erreurs SQLAlchemy sont converties en StorageError.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from scansync.exceptions import StorageError
from scansync.models.storage import StorageEntry

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_item(self, key: str) -> Optional[str]:
        """Retourne la valeur associée à `key`, ou None si absente."""
        db = self._session_factory()
        try:
            return db.execute(
                select(StorageEntry.value).where(StorageEntry.key == key)
            ).scalar()
        except SQLAlchemyError as exc:
            raise StorageError(f"Lecture de '{key}' impossible : {exc}") from exc
        finally:
            db.close()

    def set_item(self, key: str, value: str) -> None:
        db = self._session_factory()
        try:
            entry = db.get(StorageEntry, key)
            if entry is None:
                db.add(StorageEntry(key=key, value=value))
            else:
                entry.value = value
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"Écriture de '{key}' impossible : {exc}") from exc
        finally:
            db.close()

    def remove_item(self, key: str) -> None:
        self.multi_remove([key])

    def multi_remove(self, keys: Iterable[str]) -> None:
        """Supprime plusieurs clés dans une seule transaction."""
        keys = list(keys)
        db = self._session_factory()
        try:
            db.execute(delete(StorageEntry).where(StorageEntry.key.in_(keys)))
            db.commit()
            logger.debug("Clés supprimées du stockage local : %s", keys)
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"Suppression de {keys} impossible : {exc}") from exc
        finally:
            db.close()
