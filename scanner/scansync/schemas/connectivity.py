"""
Schémas de l'état de connectivité (dérivé, jamais persisté).
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class NetworkEvent(BaseModel):
    """Changement d'état réseau signalé par la plateforme (Wi-Fi, cellulaire, aucun)."""

    is_connected: bool
    transport_type: str = "unknown"


class ConnectivityState(BaseModel):
    network_reachable: bool = True
    server_reachable: bool = False
    transport_type: str = "unknown"
    last_probe_at: Optional[datetime] = None

    @property
    def is_online(self) -> bool:
        """En ligne = réseau disponible ET serveur joignable."""
        return self.network_reachable and self.server_reachable
