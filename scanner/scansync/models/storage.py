"""
Modèle SQLAlchemy du stockage clé/valeur local.

Chaque clé contient un blob texte opaque (JSON sérialisé) :
- offlineScans : instantané de la file offline
- accessToken / refreshToken / user : session d'authentification
"""

from sqlalchemy import Column, DateTime, String, Text, func

from scansync.database import Base


class StorageEntry(Base):
    """Une entrée du stockage local (clé unique → valeur texte)."""
    __tablename__ = "local_storage"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
