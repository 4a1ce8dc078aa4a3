"""
Desk service configuration.

All settings can be overridden via environment variables with the
`ENROLMENT_` prefix (e.g. `ENROLMENT_PORT=8080`). Command-line flags of the
individual entrypoints override these again.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeskSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ENROLMENT_", extra="ignore")

    # === HTTP ===
    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=3000, ge=0, le=65535, description="HTTP port")
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    # === MQTT ===
    mqtt_enabled: bool = Field(default=False, description="Bridge the queue onto MQTT")
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = Field(default=1883, ge=1, le=65535)
    namespace: str = Field(default="enrolment/v0", description="MQTT topic namespace")

    # === Tickets ===
    ticket_scheme: Literal["sequential", "rotating"] = "sequential"
    ticket_prefix: str = Field(default="A", min_length=1, max_length=3)
    ticket_start: int = Field(default=1001, ge=0)

    # === External audit webhook (optional) ===
    webhook_url: Optional[str] = Field(default=None, description="POST target for audit events")
    webhook_token: Optional[str] = None
    webhook_timeout_seconds: float = Field(default=5.0, gt=0, le=60)

    log_level: str = Field(default="INFO")

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> DeskSettings:
    return DeskSettings()
