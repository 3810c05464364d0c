"""
Client HTTP de l'API de présence (sans état).

Endpoints consommés :
- POST /api/attendance/scan   {qrCode, location, notes}
- GET  /api/attendance/today
- GET  /health                (sonde de disponibilité, sans authentification)

Chaque échec est converti en exception typée (voir scansync.exceptions) :
le client ne décide jamais de mettre un scan en file, il se contente de classer.
"""

import logging
from typing import Any, List, Optional, Protocol

import httpx

from scansync.exceptions import (
    AuthError,
    FailureKind,
    ScanSyncError,
    TransportError,
    ValidationError,
    error_from_response,
    server_message,
)
from scansync.schemas.scan import (
    AttendanceConfirmation,
    BatchResult,
    FailedScan,
    ScanRecord,
    SyncedScan,
)
from scansync.schemas.today import TodayAttendance

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    def get_access_token(self) -> Optional[str]: ...

    def refresh(self) -> bool: ...


class RemoteAttendanceClient:
    def __init__(
        self,
        http_client: httpx.Client,
        token_provider: Optional[TokenProvider] = None,
        scan_path: str = "/api/attendance/scan",
        today_path: str = "/api/attendance/today",
        health_path: str = "/health",
        probe_timeout: float = 3.0,
    ):
        self._http = http_client
        self._tokens = token_provider
        self._scan_path = scan_path
        self._today_path = today_path
        self._health_path = health_path
        self._probe_timeout = probe_timeout

    # ------------------------------------------------------------------
    # Opérations publiques
    # ------------------------------------------------------------------

    def submit_one(self, record: ScanRecord) -> AttendanceConfirmation:
        """
        Envoie un scan unique. Le serveur applique les règles métier
        (doublon du jour, personne introuvable, retard).
        Lève TransportError, ValidationError ou AuthError.
        """
        if not record.source_code:
            raise ValidationError("QR code data is missing")

        body = self._request("POST", self._scan_path, json={
            "qrCode": record.source_code,
            "location": record.location,
            "notes": record.notes,
        })
        if not body.get("success"):
            raise ValidationError(server_message(body) or "Failed to mark attendance")

        data = body.get("data") or {}
        return AttendanceConfirmation(
            record_id=record.id,
            attendance=data.get("attendance") or {},
            message=data.get("message") or "Attendance recorded",
        )

    def submit_batch(self, records: List[ScanRecord]) -> BatchResult:
        """
        Envoie les scans un par un, dans l'ordre, et agrège les résultats.
        Un rejet individuel n'interrompt pas le lot ; une session expirée l'arrête
        (les scans restants sont rendus en échec AUTH, non envoyés).
        """
        result = BatchResult()
        for index, record in enumerate(records):
            try:
                confirmation = self.submit_one(record)
            except AuthError as exc:
                logger.warning("Session expirée pendant la synchronisation du scan %s", record.id)
                result.failed.extend(
                    FailedScan(record=r, kind=FailureKind.AUTH, error=exc.message)
                    for r in records[index:]
                )
                result.aborted = True
                break
            except ScanSyncError as exc:
                logger.debug("Échec %s du scan %s : %s", exc.kind.value, record.id, exc.message)
                result.failed.append(FailedScan(record=record, kind=exc.kind, error=exc.message))
            else:
                logger.debug("Scan %s synchronisé", record.id)
                result.succeeded.append(SyncedScan(
                    record=record.model_copy(update={"sync_state": "synced"}),
                    confirmation=confirmation,
                ))

        logger.info(
            "Lot envoyé : %d scans, %d réussis, %d échoués",
            len(records), len(result.succeeded), len(result.failed),
        )
        return result

    def fetch_today(self) -> TodayAttendance:
        """Récupère les présences du jour et le résumé calculé par le serveur."""
        body = self._request("GET", self._today_path)
        if not body.get("success"):
            raise ValidationError(server_message(body) or "Failed to fetch today's attendance")
        return TodayAttendance.model_validate(body.get("data") or {})

    def probe_liveness(self) -> bool:
        """Sonde courte du endpoint de santé. Ne lève jamais."""
        try:
            response = self._http.get(self._health_path, timeout=self._probe_timeout)
        except httpx.HTTPError as exc:
            logger.debug("Sonde de connectivité en échec : %s", exc)
            return False
        return response.is_success

    # ------------------------------------------------------------------
    # Interne
    # ------------------------------------------------------------------

    def _headers(self) -> dict:
        token = self._tokens.get_access_token() if self._tokens else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}") from exc

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        response = self._send(method, path, **kwargs)

        # 401 : un seul rafraîchissement du jeton, puis on rejoue la requête
        if response.status_code == 401 and self._tokens is not None:
            logger.info("401 sur %s %s : rafraîchissement du jeton", method, path)
            if self._tokens.refresh():
                response = self._send(method, path, **kwargs)

        body = _json_or_none(response)
        if not response.is_success:
            raise error_from_response(response.status_code, body)
        if not isinstance(body, dict):
            # Ex. portail captif qui répond 200 en HTML : le serveur n'est pas réellement joint
            raise TransportError(f"Unexpected response from server (HTTP {response.status_code})")
        return body


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
