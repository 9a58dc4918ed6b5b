"""Key-value local cache for the four entity collections (file, Redis or in-memory)."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import redis
from pydantic import TypeAdapter, ValidationError

from bizflow.constants import CACHE_KEY_PREFIX, PREFERENCE_KEY_PREFIX, EntityKind
from bizflow.models import ENTITY_MODELS, Customer, Entity, Product, Supplier, Transaction
from bizflow.utils.errors import ConfigurationError, LocalCacheError
from bizflow.utils.logging import get_logger
from bizflow.utils.metrics import local_cache_read_failures

logger = get_logger(__name__)


class MemoryBackend:
    """Process-local store (tests, demos, Redis fallback)"""

    name = "memory"

    def __init__(self):
        self._values: Dict[str, str] = {}

    def read(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def write(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class FileBackend:
    """One JSON document per key under a directory"""

    name = "file"

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(value, encoding="utf-8")
        tmp_path.replace(path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class RedisBackend:
    """String keys in Redis"""

    name = "redis"

    def __init__(self, client: "redis.Redis"):
        self.client = client

    def read(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def write(self, key: str, value: str) -> None:
        self.client.set(key, value)

    def remove(self, key: str) -> None:
        self.client.delete(key)


def connect_redis(redis_host: str = "localhost:6379", db: int = 0) -> "redis.Redis":
    """Open and ping a Redis connection; raises redis.RedisError when unreachable"""
    host, _, port = redis_host.partition(':')
    client = redis.Redis(
        host=host,
        port=int(port or 6379),
        db=db,
        decode_responses=True,
        socket_keepalive=True,
        socket_connect_timeout=5
    )
    client.ping()
    logger.info("Connected to Redis", host=host, port=port or 6379)
    return client


class LocalCache:
    """
    Persisted copy of the entity collections.

    Reads never raise: an absent, unreadable or corrupt entry yields an empty
    collection. Writes raise LocalCacheError when the backend fails.
    """

    def __init__(self, backend=None):
        self.backend = backend if backend is not None else MemoryBackend()
        self._adapters = {
            kind: TypeAdapter(List[model]) for kind, model in ENTITY_MODELS.items()
        }

    @classmethod
    def from_config(cls, cache_config: Dict[str, Any]) -> "LocalCache":
        """
        Build a cache from the `local_cache` config section.

        Args:
            cache_config: {'backend': 'file'|'redis'|'memory', 'directory': ..., 'redis_host': ...}

        Raises:
            ConfigurationError: If the backend name is unknown
        """
        backend_name = cache_config.get('backend', 'file')

        if backend_name == 'memory':
            logger.info("Using in-memory local cache")
            return cls(MemoryBackend())

        if backend_name == 'file':
            directory = cache_config.get('directory', '.bizflow')
            logger.info("Using file local cache", directory=directory)
            return cls(FileBackend(directory))

        if backend_name == 'redis':
            try:
                client = connect_redis(
                    cache_config.get('redis_host', 'localhost:6379'),
                    int(cache_config.get('redis_db', 0))
                )
                return cls(RedisBackend(client))
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed, falling back to in-memory: {e}")
                return cls(MemoryBackend())

        raise ConfigurationError(f"Unknown local cache backend: {backend_name}")

    # Generic access

    def get(self, kind: EntityKind) -> List[Entity]:
        """Read one collection; empty list if absent or corrupt"""
        kind = EntityKind(kind)
        key = f"{CACHE_KEY_PREFIX}{kind.value}"

        try:
            raw = self.backend.read(key)
        except (OSError, UnicodeDecodeError, redis.RedisError) as e:
            logger.warning(f"Local cache read failed for {kind.value}: {e}")
            local_cache_read_failures.labels(kind=kind.value).inc()
            return []

        if raw is None:
            return []

        try:
            return self._adapters[kind].validate_json(raw)
        except ValidationError as e:
            logger.warning(
                f"Corrupt local cache entry for {kind.value}, using empty collection",
                errors=e.error_count()
            )
            local_cache_read_failures.labels(kind=kind.value).inc()
            return []

    def set(self, kind: EntityKind, items: Sequence[Entity]) -> None:
        """Overwrite one collection"""
        kind = EntityKind(kind)
        key = f"{CACHE_KEY_PREFIX}{kind.value}"
        value = json.dumps([item.to_wire(exact=True) for item in items])

        try:
            self.backend.write(key, value)
        except (OSError, redis.RedisError) as e:
            raise LocalCacheError(f"Failed to persist {kind.value}: {e}")

    def clear(self) -> None:
        """Remove the four entity collections (preferences are kept)"""
        for kind in EntityKind:
            try:
                self.backend.remove(f"{CACHE_KEY_PREFIX}{kind.value}")
            except (OSError, redis.RedisError) as e:
                raise LocalCacheError(f"Failed to clear {kind.value}: {e}")
        logger.info("Local cache cleared", backend=self.backend.name)

    # Per-collection accessors

    def get_transactions(self) -> List[Transaction]:
        return self.get(EntityKind.TRANSACTIONS)

    def set_transactions(self, items: Sequence[Transaction]) -> None:
        self.set(EntityKind.TRANSACTIONS, items)

    def get_customers(self) -> List[Customer]:
        return self.get(EntityKind.CUSTOMERS)

    def set_customers(self, items: Sequence[Customer]) -> None:
        self.set(EntityKind.CUSTOMERS, items)

    def get_products(self) -> List[Product]:
        return self.get(EntityKind.PRODUCTS)

    def set_products(self, items: Sequence[Product]) -> None:
        self.set(EntityKind.PRODUCTS, items)

    def get_suppliers(self) -> List[Supplier]:
        return self.get(EntityKind.SUPPLIERS)

    def set_suppliers(self, items: Sequence[Supplier]) -> None:
        self.set(EntityKind.SUPPLIERS, items)

    # Preferences

    def get_preference(self, name: str, default: Any = None) -> Any:
        """Read a small JSON preference value (transport choice, endpoint URLs)"""
        try:
            raw = self.backend.read(f"{PREFERENCE_KEY_PREFIX}{name}")
        except (OSError, redis.RedisError) as e:
            logger.warning(f"Preference read failed for {name}: {e}")
            return default

        if raw is None:
            return default

        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Corrupt preference {name}, using default")
            return default

    def set_preference(self, name: str, value: Any) -> None:
        try:
            self.backend.write(f"{PREFERENCE_KEY_PREFIX}{name}", json.dumps(value))
        except (OSError, redis.RedisError) as e:
            raise LocalCacheError(f"Failed to persist preference {name}: {e}")
