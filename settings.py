"""
Bitespeed Contact Reconciliation settings
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Database
    db_name: str = Field(default="contacts.db", alias="BITESPEED_DB_NAME")
    db_timeout: float = Field(
        default=5.0,
        alias="BITESPEED_DB_TIMEOUT",
        description="Seconds a connection waits on a locked database"
    )

    # Server
    host: str = Field(default="0.0.0.0", alias="BITESPEED_HOST")
    port: int = Field(default=8000, alias="BITESPEED_PORT")
    log_level: str = Field(default="INFO", alias="BITESPEED_LOG_LEVEL")

    # Reconciliation
    max_link_depth: int = Field(
        default=32,
        alias="BITESPEED_MAX_LINK_DEPTH",
        description="Maximum linkedId hops followed before a chain is treated as corrupt"
    )
    serialize_identify: bool = Field(
        default=True,
        alias="BITESPEED_SERIALIZE_IDENTIFY",
        description="Run each /identify request inside one write transaction"
    )

    # Seeding endpoint
    enable_add_contact: bool = Field(default=True, alias="BITESPEED_ENABLE_ADD_CONTACT")


settings = Settings()
