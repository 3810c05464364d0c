"""
Point d'entrée du module de synchronisation du scanner.

Assemble les composants (stockage, client HTTP, moniteur, file, orchestrateur,
scheduler) à partir de la configuration. Les écrans consomment ensuite
runtime.orchestrator : scan(), sync(), clear_queue(), snapshot().

    runtime = ScannerRuntime.from_settings()
    runtime.start()
    ...
    runtime.stop()
"""

import logging
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.engine import Engine

from scansync.config import Settings, settings as default_settings
from scansync.database import init_storage, make_engine, make_session_factory
from scansync.scheduler import SyncScheduler
from scansync.schemas.connectivity import NetworkEvent
from scansync.services.auth_session import AuthSession
from scansync.services.connectivity_monitor import ConnectivityMonitor
from scansync.services.local_storage import LocalStorage
from scansync.services.queue_store import OfflineQueueStore
from scansync.services.remote_client import RemoteAttendanceClient
from scansync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure le logging racine (à appeler une fois par l'application hôte)."""
    level = level or default_settings.LOG_LEVEL
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
    )


class ScannerRuntime:
    def __init__(
        self,
        engine: Engine,
        http_client: httpx.Client,
        auth: AuthSession,
        monitor: ConnectivityMonitor,
        orchestrator: SyncOrchestrator,
        scheduler: SyncScheduler,
    ):
        self.engine = engine
        self.http_client = http_client
        self.auth = auth
        self.monitor = monitor
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        monitor.add_listener(orchestrator.on_connectivity_change)

    @classmethod
    def from_settings(
        cls,
        config: Settings = default_settings,
        http_client: Optional[httpx.Client] = None,
        engine: Optional[Engine] = None,
    ) -> "ScannerRuntime":
        engine = engine or make_engine(config.STORAGE_URL)
        init_storage(engine)
        storage = LocalStorage(make_session_factory(engine))

        http_client = http_client or httpx.Client(
            base_url=config.API_BASE_URL,
            timeout=config.API_TIMEOUT,
            headers={"Content-Type": "application/json"},
        )
        auth = AuthSession(storage, http_client, config.REFRESH_PATH, config.LOGOUT_PATH)
        client = RemoteAttendanceClient(
            http_client,
            token_provider=auth,
            scan_path=config.SCAN_PATH,
            today_path=config.TODAY_PATH,
            health_path=config.HEALTH_PATH,
            probe_timeout=config.PROBE_TIMEOUT,
        )
        monitor = ConnectivityMonitor(client)
        store = OfflineQueueStore(storage, config.OFFLINE_QUEUE_KEY, config.MAX_OFFLINE_SCANS)
        orchestrator = SyncOrchestrator(
            client,
            store,
            monitor,
            default_location=config.DEFAULT_LOCATION,
            max_age=timedelta(hours=config.MAX_OFFLINE_AGE_HOURS),
            backoff_base=timedelta(seconds=config.BACKOFF_BASE_SECONDS),
            backoff_max=timedelta(seconds=config.BACKOFF_MAX_SECONDS),
        )
        scheduler = SyncScheduler(
            orchestrator,
            monitor,
            sync_interval=config.SYNC_INTERVAL_SECONDS,
            probe_interval=config.PROBE_INTERVAL_SECONDS,
        )
        logger.info("Scanner configuré — API %s (%s)", config.API_BASE_URL, config.ENV)
        return cls(engine, http_client, auth, monitor, orchestrator, scheduler)

    def start(self) -> None:
        """Restaure la file offline, sonde le serveur une fois et démarre les tâches."""
        self.orchestrator.load()
        self.monitor.probe()
        self.scheduler.start()

    def on_network_change(self, is_connected: bool, transport_type: str = "unknown") -> None:
        """Point d'entrée de l'adaptateur réseau de la plateforme."""
        self.monitor.on_network_change(
            NetworkEvent(is_connected=is_connected, transport_type=transport_type)
        )

    def stop(self) -> None:
        self.scheduler.stop()
        self.http_client.close()
        self.engine.dispose()

    def logout(self) -> None:
        """
        Arrête les tâches AVANT d'effacer la session : aucune écriture
        ne doit survenir après le nettoyage. La file offline est conservée.
        """
        self.scheduler.stop()
        self.auth.logout()
        logger.info("Déconnexion effectuée.")
