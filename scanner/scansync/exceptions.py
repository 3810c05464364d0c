"""
Taxonomie des erreurs du module de synchronisation.

- TransportError  : timeout, DNS, connexion refusée, 5xx → mise en file offline
- ValidationError : rejet métier 4xx (doublon, introuvable, QR invalide) → terminal
- AuthError       : 401 après échec du refresh → session expirée
- StorageError    : lecture/écriture du stockage local impossible

La classification HTTP est centralisée dans classify_failure() : aucun autre
module ne doit interpréter les codes de statut.
"""

from enum import Enum
from typing import Any, Optional


class FailureKind(str, Enum):
    TRANSPORT = "transport"
    VALIDATION = "validation"
    AUTH = "auth"


# Codes 4xx qui signalent un problème passager plutôt qu'un rejet du contenu
TRANSIENT_CLIENT_STATUSES = {408, 429}


class ScanSyncError(Exception):
    """Racine de toutes les erreurs levées par scansync."""

    kind: Optional[FailureKind] = None

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransportError(ScanSyncError):
    kind = FailureKind.TRANSPORT


class ValidationError(ScanSyncError):
    kind = FailureKind.VALIDATION


class AuthError(ScanSyncError):
    kind = FailureKind.AUTH


class StorageError(ScanSyncError):
    pass


def classify_failure(status_code: Optional[int]) -> FailureKind:
    """
    Classe un échec HTTP.

    None (aucune réponse reçue) → transport.
    401 → auth ; 408, 429 et 5xx → transport ; autres 4xx → validation.
    Une redirection (3xx) n'atteint pas l'API : transport.
    Lève ValueError pour un statut de succès (2xx).
    """
    if status_code is None:
        return FailureKind.TRANSPORT
    if 200 <= status_code < 300:
        raise ValueError(f"Statut {status_code} : pas un échec.")
    if status_code == 401:
        return FailureKind.AUTH
    if status_code in TRANSIENT_CLIENT_STATUSES or status_code >= 500:
        return FailureKind.TRANSPORT
    if 400 <= status_code < 500:
        return FailureKind.VALIDATION
    return FailureKind.TRANSPORT


def server_message(payload: Any) -> Optional[str]:
    """Message d'erreur porté par un corps de réponse du serveur (error.message, error ou message)."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    if payload.get("message"):
        return str(payload["message"])
    return None


def _server_details(payload: Any) -> str:
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        details = payload["error"].get("details")
        if details:
            return str(details)
    return ""


def friendly_validation_message(status_code: int, payload: Any) -> str:
    """Traduit le corps d'erreur du serveur en message affichable à l'utilisateur."""
    message = server_message(payload)
    details = _server_details(payload)

    if status_code == 400 and "integrity" in details:
        return "QR code is invalid or corrupted. Please try scanning again."
    if status_code == 404:
        return "Employee not found. Please verify the QR code is valid."
    return message or f"Server error ({status_code})"


def error_from_response(status_code: int, payload: Any) -> ScanSyncError:
    """Construit l'exception typée correspondant à une réponse HTTP en échec."""
    kind = classify_failure(status_code)
    if kind is FailureKind.VALIDATION:
        return ValidationError(friendly_validation_message(status_code, payload), status_code)
    if kind is FailureKind.AUTH:
        return AuthError("Session expired. Please log in again.", status_code)
    return TransportError(server_message(payload) or f"Server unavailable ({status_code})", status_code)
