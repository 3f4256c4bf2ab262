import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, PositiveFloat, PositiveInt
from pydantic import ValidationError as PydanticValidationError

from core.errors import ConfigurationError

# Environment variable -> Settings field
ENV_FIELDS = {
    "DATABASE_URL": "database_url",
    "OPENAI_API_KEY": "openai_api_key",
    "MISTRAL_API_KEY": "mistral_api_key",
    "EMBEDDING_BACKEND": "embedding_backend",
    "COLORS_CSV": "csv_path",
    "INGEST_BATCH_SIZE": "batch_size",
    "INGEST_REQUEST_DELAY": "request_delay",
    "INGEST_PAUSE_EVERY": "pause_every",
    "INGEST_PAUSE_SECONDS": "pause_seconds",
    "IVFFLAT_LISTS": "ivfflat_lists",
    "IVFFLAT_PROBES": "ivfflat_probes",
    "SEARCH_TIMEOUT": "search_timeout",
    "SEARCH_MATCH_COUNT": "match_count",
    "EMBEDDING_TIMEOUT": "embedding_timeout",
    "LOG_LEVEL": "log_level",
    "LOG_REQUESTS": "log_requests",
}

# Backend name -> Settings field holding its API key
CREDENTIAL_FIELDS = {
    "openai": "openai_api_key",
    "mistral": "mistral_api_key",
}


class Settings(BaseModel):
    """Explicit configuration handed to the store, pipeline and search service."""

    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite:///db/colors.db"
    openai_api_key: Optional[str] = None
    mistral_api_key: Optional[str] = None
    embedding_backend: str = "openai"
    csv_path: str = "data/colornames.csv"

    # Ingestion throttling
    batch_size: PositiveInt = 1
    request_delay: float = 0.2
    pause_every: PositiveInt = 500
    pause_seconds: float = 5.0

    # Approximate nearest-neighbour index
    ivfflat_lists: PositiveInt = 100
    ivfflat_probes: PositiveInt = 10

    search_timeout: PositiveFloat = 10.0
    match_count: PositiveInt = 10
    embedding_timeout: PositiveFloat = 30.0

    log_level: str = "INFO"
    log_requests: bool = True

    @classmethod
    def from_env(cls, env: Mapping[str, str] = None, dotenv: bool = True) -> "Settings":
        """Build settings from the process environment (and `.env`)."""
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ
        values = {
            field: env[var] for var, field in ENV_FIELDS.items() if env.get(var, "") != ""
        }
        try:
            settings = cls(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        if settings.request_delay < 0 or settings.pause_seconds < 0:
            raise ConfigurationError("Ingestion delays must not be negative")
        if not isinstance(logging.getLevelName(settings.log_level.upper()), int):
            raise ConfigurationError(f"Unknown LOG_LEVEL {settings.log_level!r}")
        settings.check_backend(settings.embedding_backend)
        return settings

    def check_backend(self, backend: str) -> None:
        if backend not in CREDENTIAL_FIELDS:
            raise ConfigurationError(
                f"Unknown embedding backend {backend!r}; "
                f"expected one of {sorted(CREDENTIAL_FIELDS)}"
            )

    def require_backend_credentials(self, backend: str = None) -> str:
        """Fail fast when the selected backend has no API key configured."""
        backend = backend or self.embedding_backend
        self.check_backend(backend)
        key = getattr(self, CREDENTIAL_FIELDS[backend])
        if not key:
            var = next(v for v, f in ENV_FIELDS.items() if f == CREDENTIAL_FIELDS[backend])
            raise ConfigurationError(f"{var} is required for the {backend} backend")
        return key
