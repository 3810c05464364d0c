"""
Tests du stockage clé/valeur local (SQLite).
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from scansync.exceptions import StorageError
from scansync.services.local_storage import LocalStorage


def test_cle_absente(storage):
    assert storage.get_item("offlineScans") is None


def test_ecriture_puis_lecture(storage):
    storage.set_item("accessToken", "abc")
    assert storage.get_item("accessToken") == "abc"


def test_ecrasement(storage):
    storage.set_item("accessToken", "abc")
    storage.set_item("accessToken", "def")
    assert storage.get_item("accessToken") == "def"


def test_multi_remove(storage):
    storage.set_item("accessToken", "a")
    storage.set_item("refreshToken", "r")
    storage.set_item("offlineScans", "[]")

    storage.multi_remove(["accessToken", "refreshToken"])

    assert storage.get_item("accessToken") is None
    assert storage.get_item("refreshToken") is None
    assert storage.get_item("offlineScans") == "[]"


def test_erreur_ecriture_convertie():
    """Une erreur SQLAlchemy en écriture → StorageError + rollback."""
    db = MagicMock()
    db.get.return_value = None
    db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
    storage = LocalStorage(lambda: db)

    with pytest.raises(StorageError):
        storage.set_item("offlineScans", "[]")

    db.rollback.assert_called_once()
    db.close.assert_called_once()


def test_erreur_lecture_convertie():
    db = MagicMock()
    db.execute.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    storage = LocalStorage(lambda: db)

    with pytest.raises(StorageError):
        storage.get_item("offlineScans")
