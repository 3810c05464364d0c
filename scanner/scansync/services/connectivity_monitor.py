"""
Surveillance de la connectivité : réseau de l'appareil + disponibilité du serveur.

is_online = réseau disponible ET serveur joignable.
Deux déclencheurs : la sonde périodique (scheduler) et les changements d'état
réseau remontés par la plateforme (on_network_change).
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol

from scansync.schemas.connectivity import ConnectivityState, NetworkEvent

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[ConnectivityState], None]


class LivenessProbe(Protocol):
    def probe_liveness(self) -> bool: ...


class ConnectivityMonitor:
    def __init__(
        self,
        probe: LivenessProbe,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._probe = probe
        self._clock = clock
        self._state = ConnectivityState()
        self._listeners: List[ConnectivityListener] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectivityState:
        return self._state.model_copy()

    @property
    def is_online(self) -> bool:
        return self._state.is_online

    def add_listener(self, listener: ConnectivityListener) -> None:
        """Enregistre un callback appelé à chaque bascule en ligne / hors ligne."""
        self._listeners.append(listener)

    def probe(self) -> ConnectivityState:
        """
        Interroge le endpoint de santé. Ne lève jamais : tout échec donne
        server_reachable=False jusqu'à la prochaine sonde (pas de retry interne).
        """
        try:
            reachable = bool(self._probe.probe_liveness())
        except Exception as exc:
            logger.warning("Sonde de connectivité en erreur : %s", exc)
            reachable = False

        logger.debug("Serveur joignable : %s", reachable)
        return self._update(server_reachable=reachable, last_probe_at=self._clock())

    def tick(self) -> Optional[ConnectivityState]:
        """Tâche périodique : ne sonde que si le réseau de l'appareil est disponible."""
        if not self._state.network_reachable:
            return None
        return self.probe()

    def on_network_change(self, event: NetworkEvent) -> ConnectivityState:
        """Changement de transport (Wi-Fi ↔ cellulaire ↔ aucun) signalé par la plateforme."""
        logger.info(
            "Changement réseau : connecté=%s, type=%s", event.is_connected, event.transport_type,
        )
        self._update(network_reachable=event.is_connected, transport_type=event.transport_type)
        if event.is_connected:
            return self.probe()
        return self._update(server_reachable=False)

    def _update(self, **changes) -> ConnectivityState:
        with self._lock:
            was_online = self._state.is_online
            self._state = self._state.model_copy(update=changes)
            now_online = self._state.is_online
            state = self._state.model_copy()

        if was_online != now_online:
            logger.info("Connectivité : %s", "en ligne" if now_online else "hors ligne")
            for listener in list(self._listeners):
                try:
                    listener(state)
                except Exception:
                    logger.error("Listener de connectivité en erreur", exc_info=True)
        return state
