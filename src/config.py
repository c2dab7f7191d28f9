import os
from typing import Mapping, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.domain.exceptions import ConfigurationException


class Settings(BaseModel):
    """Process configuration, read from the environment (and a .env file if present)."""
    model_config = ConfigDict(frozen=True)

    database_url: str = Field(..., min_length=1)
    github_token: Optional[str] = None
    inter_entity_delay: float = Field(0.5, ge=0)
    fetch_timeout: float = Field(30.0, gt=0)
    max_age_hours: float = Field(24.0, gt=0)
    batch_limit: int = Field(50, ge=1)
    log_level: str = "INFO"


ENV_KEYS = {
    "database_url": "DATABASE_URL",
    "github_token": "GITHUB_TOKEN",
    "inter_entity_delay": "ENRICHMENT_DELAY_SECONDS",
    "fetch_timeout": "ENRICHMENT_FETCH_TIMEOUT",
    "max_age_hours": "ENRICHMENT_MAX_AGE_HOURS",
    "batch_limit": "ENRICHMENT_BATCH_LIMIT",
    "log_level": "LOG_LEVEL",
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Builds Settings from environment variables. Unset and empty variables fall back to defaults.

    Raises:
        ConfigurationException: If a required variable is missing or a value is malformed.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    values = {field: environ.get(key) for field, key in ENV_KEYS.items()}
    values = {field: value for field, value in values.items() if value not in (None, "")}

    if "database_url" not in values:
        raise ConfigurationException("DATABASE_URL is not set in the environment.")

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigurationException(f"Invalid enrichment settings: {e}") from e
