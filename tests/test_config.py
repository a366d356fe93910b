"""
Tests for Settings validation
"""
import pytest
from pydantic import ValidationError

from dispatch_engine.core.config import Settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.mark.unit
class TestLockSettings:

    def test_redis_lock_must_outlive_the_store_timeout(self):
        with pytest.raises(ValidationError, match="STORE_TIMEOUT_SECONDS"):
            _settings(LOCK_BACKEND="redis", LOCK_TTL_SECONDS=10, STORE_TIMEOUT_SECONDS=10.0)

    def test_redis_lock_longer_than_store_timeout(self):
        config = _settings(LOCK_BACKEND="redis", LOCK_TTL_SECONDS=11, STORE_TIMEOUT_SECONDS=10.0)
        assert config.LOCK_BACKEND == "redis"

    def test_memory_backend_has_no_ttl(self):
        config = _settings(LOCK_BACKEND="memory", LOCK_TTL_SECONDS=1, STORE_TIMEOUT_SECONDS=10.0)
        assert config.LOCK_TTL_SECONDS == 1

    def test_backend_is_normalised(self):
        assert _settings(LOCK_BACKEND=" Redis ").LOCK_BACKEND == "redis"

    def test_unknown_backend(self):
        with pytest.raises(ValidationError, match="not supported"):
            _settings(LOCK_BACKEND="zookeeper")

    @pytest.mark.parametrize("field", ["STORE_TIMEOUT_SECONDS", "LOCK_ACQUIRE_TIMEOUT_SECONDS"])
    def test_timeouts_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            _settings(**{field: 0})


@pytest.mark.unit
class TestDatabaseUrl:

    @pytest.mark.parametrize("raw", [
        "postgres://u:p@db:5432/dispatch",
        "postgresql://u:p@db:5432/dispatch",
    ])
    def test_normalised_to_asyncpg(self, raw):
        assert _settings(DATABASE_URL=raw).DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/dispatch"
