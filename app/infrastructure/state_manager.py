import json
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.exceptions import SessionStoreError, SessionStoreUnavailable
from app.domain.models import Session
from app.interfaces.ISessionStore import ISessionStore

logger = logging.getLogger(__name__)

USER_PREFIX = "user"
SESSION_PREFIX = "session"


def user_key(user_id: str) -> str:
    return f"{USER_PREFIX}:{user_id}"


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}:{session_id}"


def session_id_from_key(key: str) -> str:
    return key.split(":", 1)[1] if ":" in key else key


def new_session(key: str) -> Session:
    return Session(session_id=session_id_from_key(key))


def encode_session(session: Session) -> str:
    """Store value: {"data": {"order", "context", "chatHistory"}}."""
    data = session.to_wire()
    data.pop("sessionId", None)
    return json.dumps({"data": data}, ensure_ascii=False)


def decode_session(key: str, raw: str) -> Session:
    data = json.loads(raw).get("data") or {}
    return Session.model_validate({**data, "sessionId": session_id_from_key(key)})


class RedisSessionStore(ISessionStore):
    def __init__(self, redis_url: str, ttl: int = 86400, client: Optional[redis.Redis] = None):
        self.ttl = ttl
        self.redis = client or redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=1  # Fail fast if Redis is down
        )
        # Refuse to start without a working store
        try:
            self.redis.ping()
        except RedisError as e:
            logger.critical(f"❌ SessionStore: Redis unreachable ({e})")
            raise SessionStoreUnavailable("Redis unreachable at startup", {"error": str(e)}) from e
        logger.info("✅ SessionStore: Connected to Redis.")

    def get(self, key: str) -> Session:
        try:
            raw = self.redis.get(key)
        except RedisError as e:
            self._handle_redis_error("get", key, e)

        if raw:
            return decode_session(key, raw)

        session = new_session(key)
        self.put(key, session)
        logger.info(f"Created session {key}")
        return session

    def put(self, key: str, session: Session) -> bool:
        try:
            self.redis.setex(key, self.ttl, encode_session(session))
        except RedisError as e:
            self._handle_redis_error("put", key, e)
        return True

    def delete(self, key: str) -> None:
        try:
            self.redis.delete(key)
        except RedisError as e:
            self._handle_redis_error("delete", key, e)
        logger.info(f"Session {key} deleted")

    def exists(self, key: str) -> bool:
        try:
            return bool(self.redis.exists(key))
        except RedisError as e:
            self._handle_redis_error("exists", key, e)

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except RedisError:
            return False

    def _handle_redis_error(self, operation: str, key: str, e: Exception):
        logger.error(f"❌ Redis Error during {operation} of {key}: {e}")
        raise SessionStoreError(f"Redis {operation} failed", {"key": key, "error": str(e)}) from e


class InMemorySessionStore(ISessionStore):
    """
    Process-local store with the same TTL semantics as Redis.

    Sync routes run in FastAPI's threadpool, so every access goes through one
    lock. Expired records are dropped when read, and any access sweeps the
    whole map at most once per `sweep_interval` seconds.
    """

    def __init__(
        self,
        ttl: int = 86400,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0,
    ):
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._memory_store: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + sweep_interval

    def _purge_expired(self, now: float) -> None:
        # Caller holds self._lock
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.sweep_interval
        expired = [k for k, (_, expires_at) in self._memory_store.items() if now >= expires_at]
        for k in expired:
            del self._memory_store[k]
        if expired:
            logger.debug(f"Purged {len(expired)} expired sessions")

    def _live_value(self, key: str) -> Optional[str]:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            record = self._memory_store.get(key)
            if record is None:
                return None
            raw, expires_at = record
            if now >= expires_at:
                self._memory_store.pop(key, None)
                logger.debug(f"Session {key} expired")
                return None
            return raw

    def get(self, key: str) -> Session:
        raw = self._live_value(key)
        if raw:
            return decode_session(key, raw)

        session = new_session(key)
        self.put(key, session)
        logger.info(f"Created session {key}")
        return session

    def put(self, key: str, session: Session) -> bool:
        value = encode_session(session)
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._memory_store[key] = (value, now + self.ttl)
        return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._memory_store.pop(key, None)

    def exists(self, key: str) -> bool:
        return self._live_value(key) is not None

    def expires_at(self, key: str) -> Optional[float]:
        record = self._memory_store.get(key)
        return record[1] if record else None

    def size(self) -> int:
        """Records held, expired or not."""
        return len(self._memory_store)


def build_session_store() -> ISessionStore:
    if settings.REDIS_URL:
        return RedisSessionStore(settings.REDIS_URL, ttl=settings.SESSION_TTL_SECONDS)
    logger.warning("⚠️ SessionStore: REDIS_URL not set. Sessions are kept in process memory.")
    return InMemorySessionStore(ttl=settings.SESSION_TTL_SECONDS)
