import pytest

from search_sync.config import ConfigurationError, Settings
from search_sync.synchronizer import Subjects


def test_defaults_match_deployed_subjects(monkeypatch):
    for var in ("SUBJECT_USER_CREATED", "SUBJECT_POST_UPSERT", "MAX_RETRIES", "SERIALIZE_BY_ID"):
        monkeypatch.delenv(var, raising=False)

    subjects = Subjects.from_settings(Settings())

    assert subjects == Subjects()
    assert subjects.user_created == "users.created"
    assert subjects.post_deleted == "posts.deleted"


def test_environment_is_read_and_converted(monkeypatch):
    monkeypatch.setenv("TYPESENSE_USERS_URL", "http://localhost:8108")
    monkeypatch.setenv("MAX_RETRIES", "0")
    monkeypatch.setenv("INDEX_TIMEOUT", "2.5")
    monkeypatch.setenv("SERIALIZE_BY_ID", "yes")
    monkeypatch.setenv("HEALTH_ENABLED", "false")

    config = Settings()

    assert config.typesense_users_url == "http://localhost:8108"
    assert config.max_retries == 0
    assert config.index_timeout == 2.5
    assert config.serialize_by_id is True
    assert config.health_enabled is False


def test_kwargs_override_environment(monkeypatch):
    monkeypatch.setenv("USERS_COLLECTION", "users_v1")

    assert Settings(users_collection="users_v2").users_collection == "users_v2"


def test_missing_creds_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv("NATS_CREDS", raising=False)

    with pytest.raises(ConfigurationError, match="NATS_CREDS"):
        Settings().require_nats_creds()

    with pytest.raises(ConfigurationError):
        Settings(nats_creds="   ").require_nats_creds()


def test_creds_blob_is_returned(monkeypatch):
    monkeypatch.setenv("NATS_CREDS", "-----BEGIN NATS USER JWT-----\nabc\n")

    assert Settings().require_nats_creds().startswith("-----BEGIN NATS USER JWT-----")
