"""
Orchestrateur de synchronisation offline-first des scans de présence.

Pour chaque scan : Attempting → {Succeeded, QueuedOffline, RejectedTerminal}
- Succès immédiat        → historique + compteurs du jour (jamais mis en file)
- Échec réseau (transport) → file offline, message "sauvegardé hors ligne"
- Rejet métier (validation) → erreur affichée, jamais mis en file ni rejoué

Vidage de la file (drain) :
- Uniquement si le moniteur de connectivité indique "en ligne"
- Envoi séquentiel FIFO via RemoteAttendanceClient.submit_batch
- Succès retirés de la file, rejets métier abandonnés, échecs réseau conservés
- Backoff exponentiel sur le vidage automatique après un cycle entièrement en échec réseau

Aucune exception ne traverse l'API publique : tout se termine en ScanResult.
L'orchestrateur est le seul à écrire dans la file offline.
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from scansync.exceptions import (
    AuthError,
    FailureKind,
    StorageError,
    TransportError,
    ValidationError,
)
from scansync.schemas.connectivity import ConnectivityState
from scansync.schemas.scan import (
    AttendanceConfirmation,
    DailySummary,
    ScannerState,
    ScanRecord,
    ScanResult,
)
from scansync.services.code_parser import parse_scanned_code, subject_id_of
from scansync.services.connectivity_monitor import ConnectivityMonitor
from scansync.services.queue_store import OfflineQueueStore
from scansync.services.remote_client import RemoteAttendanceClient

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = (
    "Connection unavailable. Attendance saved offline and will sync "
    "automatically when connection is restored."
)
STORAGE_WARNING = (
    " Warning: the scan could not be written to device storage and may be "
    "lost if the app is closed."
)
NO_SCANS_MESSAGE = "No offline scans to sync"
NOT_CONNECTED_ERROR = "No internet connection available"
SESSION_EXPIRED_ERROR = "Session expired. Please log in again."
SYNC_IN_PROGRESS_ERROR = "Sync already in progress"

StateListener = Callable[[ScannerState], None]
QueueListener = Callable[[int], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdGenerator:
    """Identifiants de scan : timestamp en millisecondes, strictement croissant."""

    def __init__(self, clock_ms: Callable[[], int] = lambda: int(time.time() * 1000)):
        self._clock_ms = clock_ms
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            value = max(self._clock_ms(), self._last + 1)
            self._last = value
            return str(value)


class SyncOrchestrator:
    def __init__(
        self,
        client: RemoteAttendanceClient,
        store: OfflineQueueStore,
        monitor: ConnectivityMonitor,
        clock: Callable[[], datetime] = _utcnow,
        id_generator: Optional[IdGenerator] = None,
        default_location: str = "Mobile App",
        max_age: timedelta = timedelta(hours=72),
        backoff_base: timedelta = timedelta(seconds=30),
        backoff_max: timedelta = timedelta(seconds=900),
    ):
        self._client = client
        self._store = store
        self._monitor = monitor
        self._clock = clock
        self._ids = id_generator or IdGenerator()
        self._default_location = default_location
        self._max_age = max_age
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max

        self._queue: List[ScanRecord] = []
        self._history: List[dict] = []
        self._summary = DailySummary()
        self._success_message: Optional[str] = None
        self._error: Optional[str] = None
        self._session_expired = False

        self._consecutive_failures = 0
        self._next_auto_attempt_at: Optional[datetime] = None

        # _lock protège l'état en mémoire ; _drain_lock empêche deux vidages simultanés
        self._lock = threading.RLock()
        self._drain_lock = threading.Lock()
        self._listeners: List[StateListener] = []
        self._queue_listeners: List[QueueListener] = []

    # ------------------------------------------------------------------
    # État exposé
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def is_online(self) -> bool:
        return self._monitor.is_online

    @property
    def history(self) -> List[dict]:
        with self._lock:
            return list(self._history)

    @property
    def summary(self) -> DailySummary:
        with self._lock:
            return self._summary.model_copy()

    @property
    def pending_scans(self) -> List[ScanRecord]:
        with self._lock:
            return list(self._queue)

    @property
    def next_auto_attempt_at(self) -> Optional[datetime]:
        return self._next_auto_attempt_at

    def snapshot(self) -> ScannerState:
        with self._lock:
            return ScannerState(
                pending_count=len(self._queue),
                is_online=self._monitor.is_online,
                history=list(self._history),
                summary=self._summary.model_copy(),
                success_message=self._success_message,
                error=self._error,
                session_expired=self._session_expired,
            )

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def add_queue_listener(self, listener: QueueListener) -> None:
        """Callback appelé avec la taille de la file à chaque modification."""
        self._queue_listeners.append(listener)

    # ------------------------------------------------------------------
    # Cycle de vie
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Restaure la file offline persistée. Retourne le nombre de scans en attente."""
        records = self._store.load_all()
        with self._lock:
            self._queue = records
        logger.info("File offline restaurée : %d scan(s) en attente", len(records))
        self._notify_queue()
        self._notify()
        return len(records)

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def scan(self, code: str, location: Optional[str] = None, notes: str = "") -> ScanResult:
        """
        Enregistre une présence à partir du contenu d'un QR code.
        Tente l'envoi immédiat, met en file si le réseau fait défaut.
        """
        try:
            parsed = parse_scanned_code(code)
            record = ScanRecord(
                id=self._ids.next(),
                source_code=code,
                subject_id=subject_id_of(parsed),
                location=location or self._default_location,
                notes=notes or "",
                captured_at=self._clock(),
            )
            logger.debug("Scan %s (%s) : tentative d'envoi", record.id, parsed.kind)

            try:
                confirmation = self._client.submit_one(record)
            except TransportError as exc:
                logger.info("Scan %s mis en file offline : %s", record.id, exc.message)
                return self._queue_offline(record)

            self._record_success(confirmation)
            return ScanResult(success=True, message=confirmation.message, outcome="succeeded")

        except ValidationError as exc:
            logger.info("Scan rejeté : %s", exc.message)
            return self._fail(exc.message, outcome="rejected")
        except AuthError as exc:
            with self._lock:
                self._session_expired = True
            return self._fail(exc.message, outcome="rejected")
        except Exception as exc:
            logger.error("Erreur inattendue pendant le scan : %s", exc, exc_info=True)
            return self._fail(str(exc) or "Failed to record attendance", outcome="rejected")

    def _record_success(self, confirmation: AttendanceConfirmation) -> None:
        with self._lock:
            self._history.insert(0, confirmation.attendance)
            self._summary.record(confirmation.status)
            self._success_message = confirmation.message
            self._error = None
            self._session_expired = False
        self._notify()

    def _queue_offline(self, record: ScanRecord) -> ScanResult:
        with self._lock:
            self._queue.append(record)
            overflow = len(self._queue) - self._store.max_size
            if overflow > 0:
                for old in self._queue[:overflow]:
                    logger.warning("File offline pleine (%d) : scan %s évincé", self._store.max_size, old.id)
                del self._queue[:overflow]
            try:
                # La file en mémoire fait foi : réécriture complète du stockage
                self._store.replace_all(self._queue)
                message = OFFLINE_MESSAGE
            except StorageError as exc:
                logger.warning("Scan %s gardé en mémoire uniquement : %s", record.id, exc)
                message = OFFLINE_MESSAGE + STORAGE_WARNING
            self._success_message = message
            self._error = None

        self._notify_queue()
        self._notify()
        return ScanResult(success=True, message=message, outcome="queued_offline")

    # ------------------------------------------------------------------
    # Synchronisation
    # ------------------------------------------------------------------

    def sync(self) -> ScanResult:
        """Synchronisation manuelle : sonde le serveur puis vide la file (sans backoff)."""
        return self.drain(probe=True)

    def auto_sync(self) -> Optional[ScanResult]:
        """
        Tâche périodique. Ne fait rien si la file est vide, si le backoff
        n'est pas écoulé ou si le moniteur indique "hors ligne".
        """
        if not self._queue:
            return None
        next_at = self._next_auto_attempt_at
        if next_at is not None and self._clock() < next_at:
            logger.debug("Synchronisation automatique différée jusqu'à %s", next_at.isoformat())
            return None
        if not self._monitor.is_online:
            logger.debug("Synchronisation automatique ignorée : hors ligne")
            return None
        logger.info("Synchronisation automatique de %d scan(s) offline", len(self._queue))
        return self.drain()

    def on_connectivity_change(self, state: ConnectivityState) -> None:
        """Listener du moniteur : vide la file dès le retour en ligne."""
        self._notify()
        if state.is_online and self._queue:
            logger.info("Retour en ligne : vidage immédiat de la file offline")
            self.drain()

    def drain(self, probe: bool = False) -> ScanResult:
        """
        Vide la file offline vers le serveur.

        Sans scan en attente : no-op, aucun appel réseau.
        Hors ligne : aucun envoi, la file est conservée.
        """
        if not self._drain_lock.acquire(blocking=False):
            return ScanResult(success=False, error=SYNC_IN_PROGRESS_ERROR)
        try:
            return self._drain(probe)
        except Exception as exc:
            logger.error("Erreur inattendue pendant la synchronisation : %s", exc, exc_info=True)
            return self._fail(str(exc) or "Sync failed")
        finally:
            self._drain_lock.release()

    def _drain(self, probe: bool) -> ScanResult:
        if not self._queue:
            return ScanResult(success=True, message=NO_SCANS_MESSAGE)

        expired = self._evict_expired()
        with self._lock:
            batch = list(self._queue)
        if not batch:
            return self._finish_sync(ScanResult(
                success=True,
                message=f"{NO_SCANS_MESSAGE}, {len(expired)} expired",
            ))

        if probe:
            self._monitor.probe()
        if not self._monitor.is_online:
            return self._fail(NOT_CONNECTED_ERROR)

        result = self._client.submit_batch(batch)

        synced_ids = {s.record.id for s in result.succeeded}
        rejected = [f for f in result.failed if f.kind is FailureKind.VALIDATION]
        retained = [f for f in result.failed if f.kind is not FailureKind.VALIDATION]
        removed_ids = synced_ids | {f.record.id for f in rejected}

        with self._lock:
            # Les scans ajoutés pendant l'envoi restent dans la file
            self._queue = [r for r in self._queue if r.id not in removed_ids]
            for synced in result.succeeded:
                self._history.insert(0, synced.confirmation.attendance)
                self._summary.record(synced.confirmation.status)
            self._persist_queue()
            self._update_backoff(
                result.succeeded,
                [f for f in retained if f.kind is FailureKind.TRANSPORT],
            )

        for failed in rejected:
            logger.warning("Scan %s abandonné (rejeté par le serveur) : %s", failed.record.id, failed.error)

        if result.aborted:
            with self._lock:
                self._session_expired = True
            self._notify_queue()
            return self._fail(SESSION_EXPIRED_ERROR)

        message = f"{len(result.succeeded)} scans synced successfully"
        if retained:
            message += f", {len(retained)} failed"
        if rejected:
            message += f", {len(rejected)} rejected"
        if expired:
            message += f", {len(expired)} expired"

        logger.info(
            "Synchronisation : %d envoyés, %d synchronisés, %d conservés, %d rejetés",
            len(batch), len(result.succeeded), len(retained), len(rejected),
        )
        return self._finish_sync(ScanResult(
            success=True,
            message=message,
            synced_count=len(result.succeeded),
            failed_count=len(retained),
            rejected_count=len(rejected),
        ))

    def _finish_sync(self, result: ScanResult) -> ScanResult:
        with self._lock:
            self._success_message = result.message
            self._error = None
        self._notify_queue()
        self._notify()
        return result

    def _evict_expired(self) -> List[ScanRecord]:
        now = self._clock()
        with self._lock:
            expired = [r for r in self._queue if now - r.captured_at > self._max_age]
            if expired:
                expired_ids = {r.id for r in expired}
                self._queue = [r for r in self._queue if r.id not in expired_ids]
                self._persist_queue()
        for record in expired:
            logger.warning("Scan %s expiré (capturé le %s), retiré de la file", record.id, record.captured_at)
        return expired

    def _update_backoff(self, succeeded: list, retained: list) -> None:
        if succeeded or not retained:
            self._consecutive_failures = 0
            self._next_auto_attempt_at = None
            return
        self._consecutive_failures += 1
        delay = min(
            self._backoff_base * (2 ** (self._consecutive_failures - 1)),
            self._backoff_max,
        )
        self._next_auto_attempt_at = self._clock() + delay
        logger.info(
            "Échec réseau n°%d : prochaine synchronisation automatique dans %ds",
            self._consecutive_failures, int(delay.total_seconds()),
        )

    def _persist_queue(self) -> None:
        try:
            self._store.replace_all(self._queue)
        except StorageError as exc:
            logger.warning("Écriture de la file offline impossible : %s", exc)

    # ------------------------------------------------------------------
    # Données du jour et maintenance
    # ------------------------------------------------------------------

    def refresh_today(self) -> ScanResult:
        """Recharge l'historique et les compteurs du jour depuis le serveur."""
        try:
            today = self._client.fetch_today()
        except AuthError as exc:
            with self._lock:
                self._session_expired = True
            return self._fail(exc.message)
        except (TransportError, ValidationError) as exc:
            return self._fail(exc.message)
        except Exception as exc:
            logger.error("Erreur inattendue pendant le rechargement : %s", exc, exc_info=True)
            return self._fail(str(exc) or "Network error")

        with self._lock:
            self._history = list(today.attendance)
            self._summary = DailySummary(
                scanned=today.summary.total,
                present=today.summary.present,
                late=today.summary.late,
            )
            self._error = None
        self._notify()
        return ScanResult(success=True, message=f"{today.summary.total} attendance records loaded")

    def clear_queue(self) -> ScanResult:
        """Vide la file offline (utile si des données corrompues bloquent la synchronisation)."""
        with self._lock:
            self._queue = []
            self._consecutive_failures = 0
            self._next_auto_attempt_at = None
            try:
                self._store.clear()
            except StorageError as exc:
                logger.error("Échec du vidage de la file offline : %s", exc)
                result = ScanResult(success=False, error="Failed to clear offline data")
            else:
                result = ScanResult(success=True, message="Offline data cleared successfully")
        self._notify_queue()
        self._notify()
        return result

    def clear_messages(self) -> None:
        with self._lock:
            self._success_message = None
            self._error = None
        self._notify()

    # ------------------------------------------------------------------
    # Interne
    # ------------------------------------------------------------------

    def _fail(self, error: str, outcome: Optional[str] = None) -> ScanResult:
        with self._lock:
            self._error = error
            self._success_message = None
        self._notify()
        return ScanResult(success=False, error=error, outcome=outcome)

    def _notify(self) -> None:
        if not self._listeners:
            return
        state = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.error("Listener d'état en erreur", exc_info=True)

    def _notify_queue(self) -> None:
        count = len(self._queue)
        for listener in list(self._queue_listeners):
            try:
                listener(count)
            except Exception:
                logger.error("Listener de file en erreur", exc_info=True)
