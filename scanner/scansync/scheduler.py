"""
Planificateur APScheduler du scanner.

Deux tâches :
- connectivity_probe : sonde du serveur toutes les PROBE_INTERVAL_SECONDS (toujours active)
- offline_drain      : vidage de la file toutes les SYNC_INTERVAL_SECONDS,
                       armée dès qu'un scan est mis en file, retirée quand la file est vide

Un seul worker : les tâches ne se chevauchent jamais (modèle mono-thread du scanner).
"""

import logging
from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from scansync.services.connectivity_monitor import ConnectivityMonitor
from scansync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

PROBE_JOB_ID = "connectivity_probe"
DRAIN_JOB_ID = "offline_drain"


class SyncScheduler:
    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        monitor: ConnectivityMonitor,
        sync_interval: int = 30,
        probe_interval: int = 30,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self._orchestrator = orchestrator
        self._monitor = monitor
        self._sync_interval = sync_interval
        self._probe_interval = probe_interval
        self._scheduler = scheduler or BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        orchestrator.add_queue_listener(self.on_queue_changed)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def drain_armed(self) -> bool:
        return self._scheduler.get_job(DRAIN_JOB_ID) is not None

    def start(self) -> None:
        """Démarre le planificateur en arrière-plan."""
        self._scheduler.add_job(
            self._monitor.tick,
            trigger="interval",
            seconds=self._probe_interval,
            id=PROBE_JOB_ID,
            replace_existing=True,
        )
        self.on_queue_changed(self._orchestrator.pending_count)
        self._scheduler.start()
        logger.info(
            "Scheduler démarré — sonde toutes les %ds, synchronisation toutes les %ds.",
            self._probe_interval, self._sync_interval,
        )

    def stop(self) -> None:
        """Retire les tâches puis arrête le planificateur sans attendre."""
        self._scheduler.remove_all_jobs()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler arrêté.")

    def on_queue_changed(self, pending_count: int) -> None:
        """Arme la tâche de vidage tant que la file contient des scans, la retire sinon."""
        if pending_count > 0:
            self.arm_drain()
        else:
            self.disarm_drain()

    def arm_drain(self) -> None:
        if self.drain_armed:
            return
        self._scheduler.add_job(
            self._orchestrator.auto_sync,
            trigger="interval",
            seconds=self._sync_interval,
            id=DRAIN_JOB_ID,
            replace_existing=True,
        )
        logger.info("Vidage automatique de la file offline armé (%ds).", self._sync_interval)

    def disarm_drain(self) -> None:
        if not self.drain_armed:
            return
        self._scheduler.remove_job(DRAIN_JOB_ID)
        logger.info("File offline vide : vidage automatique désarmé.")
