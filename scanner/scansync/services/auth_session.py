"""
Session d'authentification du scanner.

Les jetons sont émis par le backend lors de la connexion (hors de ce module) et
conservés dans le stockage local. Ce module les relit, rafraîchit le jeton
d'accès après un 401 et nettoie la session à la déconnexion.
"""

import logging
from typing import Optional

import httpx

from scansync.exceptions import FailureKind, StorageError, TransportError, classify_failure
from scansync.services.local_storage import LocalStorage

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
USER_KEY = "user"
SESSION_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)


class AuthSession:
    def __init__(
        self,
        storage: LocalStorage,
        http_client: httpx.Client,
        refresh_path: str = "/api/auth/refresh",
        logout_path: str = "/api/auth/logout",
    ):
        self._storage = storage
        self._http = http_client
        self._refresh_path = refresh_path
        self._logout_path = logout_path

    def get_access_token(self) -> Optional[str]:
        try:
            return self._storage.get_item(ACCESS_TOKEN_KEY)
        except StorageError as exc:
            logger.warning("Jeton d'accès illisible : %s", exc)
            return None

    def store_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        self._storage.set_item(ACCESS_TOKEN_KEY, access_token)
        if refresh_token:
            self._storage.set_item(REFRESH_TOKEN_KEY, refresh_token)

    def refresh(self) -> bool:
        """
        Échange le refresh token contre un nouveau jeton d'accès.
        Retourne False (et efface la session) si le serveur refuse le rafraîchissement.
        Lève TransportError si le serveur n'est pas joint : les jetons sont conservés
        et l'appelant traite l'échec comme une panne réseau.
        """
        try:
            refresh_token = self._storage.get_item(REFRESH_TOKEN_KEY)
        except StorageError as exc:
            logger.warning("Refresh token illisible : %s", exc)
            refresh_token = None

        if not refresh_token:
            logger.info("Aucun refresh token : session expirée.")
            self.clear()
            return False

        try:
            response = self._http.post(self._refresh_path, json={"refreshToken": refresh_token})
        except httpx.HTTPError as exc:
            logger.warning("Rafraîchissement du jeton impossible : %s", exc)
            raise TransportError(f"Network error: {exc}") from exc

        if not response.is_success and classify_failure(response.status_code) is FailureKind.TRANSPORT:
            logger.warning("Serveur indisponible pendant le refresh (HTTP %s)", response.status_code)
            raise TransportError(f"Server unavailable ({response.status_code})", response.status_code)

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None
        if not isinstance(body, dict):
            if response.is_success:
                # Ex. portail captif : 200 sans JSON, le backend n'a pas répondu
                raise TransportError(f"Unexpected response from server (HTTP {response.status_code})")
            body = {}
        access_token = (body.get("data") or {}).get("accessToken")
        if response.is_success and body.get("success") and access_token:
            self._storage.set_item(ACCESS_TOKEN_KEY, access_token)
            logger.info("Jeton d'accès rafraîchi.")
            return True

        logger.warning("Refresh refusé par le serveur (HTTP %s) : session effacée.", response.status_code)
        self.clear()
        return False

    def logout(self) -> None:
        """Prévient le serveur (best-effort) puis efface les jetons locaux."""
        try:
            refresh_token = self._storage.get_item(REFRESH_TOKEN_KEY)
            if refresh_token:
                self._http.post(self._logout_path, json={"refreshToken": refresh_token})
        except (httpx.HTTPError, StorageError) as exc:
            logger.error("Erreur lors de la déconnexion : %s", exc)
        finally:
            self.clear()

    def clear(self) -> None:
        try:
            self._storage.multi_remove(SESSION_KEYS)
        except StorageError as exc:
            logger.warning("Effacement de la session impossible : %s", exc)
