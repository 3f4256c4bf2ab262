import pytest

from core.config import Settings
from core.errors import ConfigurationError


def test_defaults_from_empty_environment():
    settings = Settings.from_env(env={})
    assert settings.embedding_backend == "openai"
    assert settings.batch_size == 1
    assert settings.ivfflat_probes == 10
    assert settings.match_count == 10


def test_values_are_read_from_environment():
    settings = Settings.from_env(
        env={
            "DATABASE_URL": "postgresql://localhost/colors",
            "EMBEDDING_BACKEND": "mistral",
            "MISTRAL_API_KEY": "m-key",
            "INGEST_BATCH_SIZE": "25",
            "IVFFLAT_PROBES": "40",
            "SEARCH_TIMEOUT": "2.5",
            "LOG_REQUESTS": "false",
        }
    )
    assert settings.database_url == "postgresql://localhost/colors"
    assert settings.batch_size == 25
    assert settings.ivfflat_probes == 40
    assert settings.search_timeout == 2.5
    assert settings.log_requests is False
    assert settings.require_backend_credentials() == "m-key"


@pytest.mark.parametrize(
    "env",
    [
        {"EMBEDDING_BACKEND": "cohere"},
        {"INGEST_BATCH_SIZE": "zero"},
        {"IVFFLAT_PROBES": "0"},
        {"INGEST_REQUEST_DELAY": "-1"},
        {"LOG_LEVEL": "loud"},
    ],
)
def test_invalid_configuration_is_fatal(env):
    with pytest.raises(ConfigurationError):
        Settings.from_env(env=env)


def test_missing_api_key_is_fatal():
    settings = Settings.from_env(env={})
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        settings.require_backend_credentials()


def test_log_level_is_case_insensitive():
    assert Settings.from_env(env={"LOG_LEVEL": "debug"}).log_level == "debug"
