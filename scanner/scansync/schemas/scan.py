"""
Schémas Pydantic des scans de présence côté scanner.

Un ScanRecord est créé à chaque lecture de QR code. Il n'est persisté dans la
file offline que si l'envoi immédiat échoue pour une raison réseau.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from scansync.exceptions import FailureKind

SyncState = Literal["pending", "synced", "failed"]
ScanOutcome = Literal["succeeded", "queued_offline", "rejected"]


class ScanRecord(BaseModel):
    """Unité de travail : une lecture de QR code en attente de confirmation serveur."""

    id: str                        # Timestamp ms monotone, stable entre les tentatives
    source_code: str               # Contenu brut du QR code (JSON ou identifiant nu)
    subject_id: str                # Identifiant extrait (ou le code entier)
    location: str = ""
    notes: str = ""
    captured_at: datetime          # Horodatage client du scan (avant réseau)
    sync_state: SyncState = "pending"

    @field_validator("captured_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        # Les anciens scans sans fuseau sont considérés en UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class StructuredCode(BaseModel):
    """QR code JSON portant un identifiant (employeeId, studentId ou id)."""

    kind: Literal["structured"] = "structured"
    subject_id: str
    name: Optional[str] = None
    code_type: Optional[str] = None
    expires: Optional[str] = None
    raw: str


class RawCode(BaseModel):
    """QR code non structuré : le contenu entier sert d'identifiant."""

    kind: Literal["raw"] = "raw"
    code: str


ParsedCode = Union[StructuredCode, RawCode]


class AttendanceConfirmation(BaseModel):
    """Réponse du serveur pour un scan accepté."""

    record_id: Optional[str] = None
    attendance: Dict[str, Any] = Field(default_factory=dict)
    message: str = ""

    @property
    def status(self) -> Optional[str]:
        """Statut attribué par le serveur (present, late, ...)."""
        return self.attendance.get("status")


class SyncedScan(BaseModel):
    record: ScanRecord
    confirmation: AttendanceConfirmation


class FailedScan(BaseModel):
    record: ScanRecord
    kind: FailureKind
    error: str


class BatchResult(BaseModel):
    """Résultat agrégé d'un envoi de la file, enregistrement par enregistrement."""

    succeeded: List[SyncedScan] = Field(default_factory=list)
    failed: List[FailedScan] = Field(default_factory=list)
    aborted: bool = False          # True si le lot a été interrompu (session expirée)


class DailySummary(BaseModel):
    """Compteurs du jour (en mémoire uniquement)."""

    scanned: int = 0
    present: int = 0
    late: int = 0

    def record(self, status: Optional[str]) -> None:
        self.scanned += 1
        if status == "present":
            self.present += 1
        elif status == "late":
            self.late += 1


class ScanResult(BaseModel):
    """Résultat discriminé renvoyé par toutes les opérations publiques de l'orchestrateur."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    outcome: Optional[ScanOutcome] = None
    synced_count: int = 0
    failed_count: int = 0
    rejected_count: int = 0


class ScannerState(BaseModel):
    """Instantané de l'état exposé aux écrans."""

    pending_count: int
    is_online: bool
    history: List[Dict[str, Any]]
    summary: DailySummary
    success_message: Optional[str] = None
    error: Optional[str] = None
    session_expired: bool = False
