"""
Caché de idempotencia de emisiones.

Backend Redis si responde al arrancar; si no, un dict en memoria del proceso
con barrido periódico. La conectividad se prueba una sola vez en el
constructor: no hay reconexión transparente a mitad de una solicitud.

Formato en Redis:
    idempotency:<clave> -> {"result": {...}, "content_fingerprint": "...",
                            "stored_at": 1700000000.0, "ttl": 3600}
"""
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from .models import (
    CanonicalResult,
    STATUS_AUTHORIZED,
    STATUS_ERROR,
    STATUS_NOT_AUTHORIZED,
    STATUS_PROCESSING,
)

logger = logging.getLogger(__name__)

KEY_PREFIX = "idempotency:"
MEMORY_MAX_AGE = 24 * 60 * 60


@dataclass(frozen=True)
class CachedOutcome:
    result: CanonicalResult
    content_fingerprint: str
    stored_at: float
    ttl: int

    def to_json(self) -> str:
        return json.dumps(
            {
                "result": self.result.to_dict(),
                "content_fingerprint": self.content_fingerprint,
                "stored_at": self.stored_at,
                "ttl": self.ttl,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: Any) -> "CachedOutcome":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        return cls(
            result=CanonicalResult.from_dict(data["result"]),
            content_fingerprint=data["content_fingerprint"],
            stored_at=float(data["stored_at"]),
            ttl=int(data["ttl"]),
        )


class IdempotencyCache:
    """
    get/set de resultados por clave de idempotencia, con TTL según estado.

    Args:
        redis_url: URL de Redis (None => memoria)
        redis_client: cliente ya construido (tiene prioridad sobre redis_url)
        ttl_error / ttl_processing / ttl_final: TTL en segundos por estado
        sweep_interval: segundos entre barridos de la caché en memoria
        start_sweeper: lanzar el hilo de barrido (False en tests)
        clock: fuente de tiempo (time.time)
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        redis_client: Any = None,
        ttl_error: int = 60 * 60,
        ttl_processing: int = 2 * 60,
        ttl_final: int = 24 * 60 * 60,
        sweep_interval: int = 60 * 60,
        start_sweeper: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._ttls = {
            STATUS_ERROR: ttl_error,
            STATUS_PROCESSING: ttl_processing,
            STATUS_NOT_AUTHORIZED: ttl_final,
            STATUS_AUTHORIZED: ttl_final,
        }
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._memory: Dict[str, Tuple[float, int, str]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        self._redis = None
        if redis_client is None and redis_url:
            redis_client = redis.Redis.from_url(redis_url, socket_connect_timeout=2)
        if redis_client is not None:
            try:
                redis_client.ping()
                self._redis = redis_client
                logger.info("Caché de idempotencia: Redis conectado")
            except (redis.RedisError, OSError) as e:
                logger.warning(f"Redis no disponible ({type(e).__name__}: {e}); usando caché en memoria")

        if self._redis is None and start_sweeper:
            self._start_sweeper()

    @classmethod
    def from_config(cls, config, **kwargs) -> "IdempotencyCache":
        return cls(
            config.redis_url,
            ttl_error=config.ttl_error,
            ttl_processing=config.ttl_processing,
            ttl_final=config.ttl_final,
            sweep_interval=config.cache_sweep_interval,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Salud
    # ------------------------------------------------------------------

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    @property
    def healthy(self) -> bool:
        """True si el backend activo es el compartido (Redis)"""
        return self._redis is not None

    def health(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"backend": self.backend, "shared": self.healthy}
        if self._redis is None:
            with self._lock:
                out["entries"] = len(self._memory)
        return out

    def ttl_for(self, status: str) -> int:
        return self._ttls[status]

    # ------------------------------------------------------------------
    # get / set
    # ------------------------------------------------------------------

    @staticmethod
    def _store_key(key: str) -> str:
        return f"{KEY_PREFIX}{key}"

    def get(self, key: str) -> Optional[CachedOutcome]:
        store_key = self._store_key(key)
        if self._redis is not None:
            try:
                raw = self._redis.get(store_key)
            except redis.RedisError as e:
                logger.warning(f"Lectura de caché falló para {key!r}: {e}")
                return None
        else:
            now = self._clock()
            with self._lock:
                entry = self._memory.get(store_key)
                if entry is not None and now - entry[0] >= entry[1]:
                    del self._memory[store_key]
                    entry = None
            raw = entry[2] if entry is not None else None

        if raw is None:
            return None
        try:
            return CachedOutcome.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Entrada de caché corrupta para {key!r}: {e}")
            return None

    def set(self, key: str, result: CanonicalResult, content_fingerprint: str, ttl: Optional[int] = None) -> CachedOutcome:
        """
        Guarda el resultado bajo la clave, con el TTL del estado si no se indica.

        Returns:
            El CachedOutcome almacenado
        """
        if ttl is None:
            ttl = self.ttl_for(result.status)
        outcome = CachedOutcome(
            result=result,
            content_fingerprint=content_fingerprint,
            stored_at=self._clock(),
            ttl=ttl,
        )
        store_key = self._store_key(key)
        payload = outcome.to_json()

        if self._redis is not None:
            try:
                self._redis.set(store_key, payload, ex=ttl)
            except redis.RedisError as e:
                logger.warning(f"Escritura de caché falló para {key!r}: {e}")
        else:
            with self._lock:
                self._memory[store_key] = (outcome.stored_at, ttl, payload)

        logger.info(f"Caché idempotencia set key={key} status={result.status} ttl={ttl}s backend={self.backend}")
        return outcome

    # ------------------------------------------------------------------
    # Barrido de la caché en memoria
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """
        Elimina entradas vencidas o con más de 24h.

        Returns:
            Cantidad de entradas eliminadas
        """
        now = self._clock()
        with self._lock:
            stale = [
                k for k, (stored_at, ttl, _) in self._memory.items()
                if now - stored_at >= ttl or now - stored_at > MEMORY_MAX_AGE
            ]
            for k in stale:
                del self._memory[k]
        if stale:
            logger.info(f"Barrido de caché: {len(stale)} entradas eliminadas")
        return len(stale)

    def _start_sweeper(self) -> None:
        def worker():
            while not self._stop.wait(self._sweep_interval):
                try:
                    self.sweep()
                except Exception:
                    logger.exception("Error en barrido de caché")

        self._sweeper = threading.Thread(target=worker, name="idempotency-sweeper", daemon=True)
        self._sweeper.start()

    def close(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1)
            self._sweeper = None
