"""
Analyse du contenu d'un QR code scanné.

Deux formats coexistent :
- JSON (badge généré par le tableau de bord) : {"type": "attendance", "employeeId": ..., "name": ...}
- Identifiant nu (ex. "EMP-001")

Le serveur reste seul juge de la validité du code : l'analyse locale sert
uniquement à extraire un identifiant pour l'affichage et la file offline.
"""

import json

from scansync.exceptions import ValidationError
from scansync.schemas.scan import ParsedCode, RawCode, StructuredCode

# Ordre de priorité des champs identifiant
SUBJECT_ID_FIELDS = ("employeeId", "studentId", "id")


def _text(value):
    return None if value is None else str(value)


def parse_scanned_code(code: str) -> ParsedCode:
    """
    Retourne StructuredCode si le code est un objet JSON portant un identifiant,
    RawCode sinon. Lève ValidationError si le code est vide.
    """
    if code is None or not code.strip():
        raise ValidationError("QR code data is missing")

    text = code.strip()
    try:
        data = json.loads(text)
    except ValueError:
        return RawCode(code=text)

    if not isinstance(data, dict):
        return RawCode(code=text)

    for field in SUBJECT_ID_FIELDS:
        value = data.get(field)
        if value not in (None, ""):
            return StructuredCode(
                subject_id=str(value),
                name=_text(data.get("name")),
                code_type=_text(data.get("type")),
                expires=_text(data.get("expires")),
                raw=text,
            )
    return RawCode(code=text)


def subject_id_of(parsed: ParsedCode) -> str:
    if isinstance(parsed, StructuredCode):
        return parsed.subject_id
    return parsed.code
