"""
Configuration centrale du scanner via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # API backend
    API_BASE_URL: str = "http://localhost:5000"
    API_TIMEOUT: float = 15.0
    PROBE_TIMEOUT: float = 3.0
    HEALTH_PATH: str = "/health"
    SCAN_PATH: str = "/api/attendance/scan"
    TODAY_PATH: str = "/api/attendance/today"
    REFRESH_PATH: str = "/api/auth/refresh"
    LOGOUT_PATH: str = "/api/auth/logout"

    # Stockage local (équivalent du stockage clé/valeur de l'appareil)
    STORAGE_URL: str = "sqlite:///scanner_storage.db"
    OFFLINE_QUEUE_KEY: str = "offlineScans"

    # File offline
    MAX_OFFLINE_SCANS: int = 100
    MAX_OFFLINE_AGE_HOURS: int = 72

    # Planification (secondes)
    SYNC_INTERVAL_SECONDS: int = 30
    PROBE_INTERVAL_SECONDS: int = 30
    BACKOFF_BASE_SECONDS: int = 30
    BACKOFF_MAX_SECONDS: int = 900

    DEFAULT_LOCATION: str = "Mobile App"
    LOG_LEVEL: str = "INFO"

    # Environnement
    ENV: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
