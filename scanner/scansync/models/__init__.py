# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant l'appel à init_storage().

from scansync.models.storage import StorageEntry  # noqa: F401
