"""
File offline des scans en attente (persistée dans le stockage local).

Format du blob stocké sous la clé OFFLINE_QUEUE_KEY :
    {"version": 1, "scans": [ScanRecord, ...]}

- Ordre FIFO = ordre de capture
- Ne contient jamais de scan `synced`
- Taille bornée : au-delà de max_size, les plus anciens sont évincés
- Blob illisible → file vide + warning (jamais de crash au démarrage)
- L'ancien format (liste JSON nue, champs qrData/studentId/scanTime) est migré au chargement
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Tuple

from pydantic import ValidationError as PydanticValidationError

from scansync.exceptions import StorageError
from scansync.schemas.scan import ScanRecord
from scansync.services.local_storage import LocalStorage

logger = logging.getLogger(__name__)

QUEUE_FORMAT_VERSION = 1


def _from_millis(value):
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def _migrate_legacy_scan(item: dict) -> dict:
    """Convertit une entrée de l'ancien format non versionné vers ScanRecord."""
    code = item.get("qrData") or item.get("qrCode") or ""
    return {
        "id": str(item.get("id") or item.get("timestamp")),
        "source_code": code,
        "subject_id": str(item.get("studentId") or item.get("employeeId") or code),
        "location": item.get("location") or "",
        "notes": item.get("notes") or "",
        "captured_at": item.get("scanTime") or _from_millis(item.get("timestamp")),
        "sync_state": "pending",
    }


class OfflineQueueStore:
    def __init__(self, storage: LocalStorage, key: str = "offlineScans", max_size: int = 100):
        if max_size < 1:
            raise ValueError("max_size doit être au moins 1.")
        self._storage = storage
        self._key = key
        self._max_size = max_size

    @property
    def max_size(self) -> int:
        return self._max_size

    def load_all(self) -> List[ScanRecord]:
        """
        Restaure la file depuis le stockage local.
        Ne lève jamais : toute erreur de lecture ou de décodage donne une file vide.
        """
        try:
            blob = self._storage.get_item(self._key)
        except StorageError as exc:
            logger.warning("Lecture de la file offline impossible, file vide utilisée : %s", exc)
            return []
        if blob is None:
            return []

        try:
            data = json.loads(blob)
            if isinstance(data, list):
                logger.info("Migration de la file offline (ancien format, %d scans)", len(data))
                items = [_migrate_legacy_scan(item) for item in data]
            elif isinstance(data, dict) and data.get("version") == QUEUE_FORMAT_VERSION:
                items = data.get("scans", [])
            else:
                raise ValueError(f"Format de file inconnu : {str(data)[:80]}")
            records = [ScanRecord.model_validate(item) for item in items]
        except (ValueError, TypeError, AttributeError, OverflowError, OSError, PydanticValidationError) as exc:
            logger.warning("File offline corrompue, réinitialisée : %s", exc)
            return []

        return [r for r in records if r.sync_state == "pending"]

    def append(self, record: ScanRecord) -> List[ScanRecord]:
        """
        Ajoute un scan en fin de file et persiste l'ensemble en une transaction.
        Retourne les scans évincés (les plus anciens) si la capacité est dépassée.
        Lève StorageError si l'écriture échoue.
        """
        records = self.load_all()
        records.append(record.model_copy(update={"sync_state": "pending"}))
        records, evicted = self._bound(records)
        self._write(records)
        for old in evicted:
            logger.warning("File offline pleine (%d) : scan %s évincé", self._max_size, old.id)
        return evicted

    def replace_all(self, records: List[ScanRecord]) -> List[ScanRecord]:
        """Remplace la file entière ; seuls les scans `pending` sont conservés."""
        pending = [r for r in records if r.sync_state == "pending"]
        pending, evicted = self._bound(pending)
        self._write(pending)
        return evicted

    def clear(self) -> None:
        self._storage.remove_item(self._key)
        logger.info("File offline vidée.")

    def _bound(self, records: List[ScanRecord]) -> Tuple[List[ScanRecord], List[ScanRecord]]:
        overflow = len(records) - self._max_size
        if overflow <= 0:
            return records, []
        return records[overflow:], records[:overflow]

    def _write(self, records: List[ScanRecord]) -> None:
        blob = json.dumps({
            "version": QUEUE_FORMAT_VERSION,
            "scans": [r.model_dump(mode="json") for r in records],
        })
        self._storage.set_item(self._key, blob)
