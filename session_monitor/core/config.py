"""
Configuration settings for the Device Session Monitor
"""

from pydantic_settings import BaseSettings
from typing import Optional
from datetime import tzinfo
from zoneinfo import ZoneInfo


class Settings(BaseSettings):
    """Application settings"""

    # Transport (MQTT broker endpoint and telemetry channel)
    broker_url: str = ""
    topic: str = "game"
    mqtt_client_prefix: str = "session-monitor"
    mqtt_keepalive: int = 60
    auto_connect: bool = True

    # Connection supervision
    connect_timeout: float = 4.0  # seconds
    reconnect_base_delay: float = 1.0  # seconds
    reconnect_max_delay: float = 30.0  # seconds
    max_reconnect_attempts: int = 5

    # Storage
    storage_backend: str = "file"  # file, database
    snapshot_path: str = "data/snapshot.json"
    database_url: str = "sqlite:///./session_monitor.db"
    save_interval: float = 60.0  # seconds
    trailing_event_limit: int = 100

    # Reporting
    report_timezone: Optional[str] = None  # IANA name, empty for system local
    report_default_days: int = 30

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def report_tz(self) -> Optional[tzinfo]:
        """Timezone used for calendar-day bucketing, None for system local"""
        if not self.report_timezone:
            return None
        return ZoneInfo(self.report_timezone)


# Global settings instance
settings = Settings()
