"""
Resolución de ambiente (test/prod) y consulta de estado por clave de acceso.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Optional

from app.sri_client.clave_acceso import ambiente_digit, is_clave_acceso_format
from app.sri_client.config import SriConfig
from app.sri_client.exceptions import TransportError

from .models import (
    CanonicalResult,
    STATUS_AUTHORIZED,
    STATUS_NOT_AUTHORIZED,
    STATUS_PROCESSING,
)
from .normalizer import parse_autorizacion, to_canonical_result

logger = logging.getLogger(__name__)

AMBIENTE_ENV = {"1": SriConfig.ENV_TEST, "2": SriConfig.ENV_PROD}
# Orden de preferencia al consultar ambos ambientes
STATUS_PRIORITY = (STATUS_AUTHORIZED, STATUS_PROCESSING, STATUS_NOT_AUTHORIZED)


@dataclass(frozen=True)
class Endpoints:
    recepcion: str
    autorizacion: str


class EnvironmentResolver:
    """
    Endpoints por ambiente y consulta de autorización

    Args:
        config: SriConfig
        transport: objeto con check_authorization(endpoint, access_key) -> dict
    """

    def __init__(self, config: SriConfig, transport):
        self.config = config
        self.transport = transport

    def infer_env(self, access_key: Optional[str]) -> str:
        """Ambiente según el dígito de ambiente de la clave; 'test' si no se reconoce."""
        return AMBIENTE_ENV.get(ambiente_digit(access_key or ""), SriConfig.ENV_TEST)

    def resolve(self, env: Optional[str] = None, access_key: Optional[str] = None) -> Endpoints:
        if env is None:
            env = self.infer_env(access_key)
        return Endpoints(
            recepcion=self.config.get_wsdl_url(env, "recepcion"),
            autorizacion=self.config.get_wsdl_url(env, "autorizacion"),
        )

    def poll(self, access_key: str, env: str) -> CanonicalResult:
        """
        Una consulta a Autorización en un ambiente

        Raises:
            TransportError: si la llamada falla
        """
        endpoint = self.resolve(env).autorizacion
        reply = self.transport.check_authorization(endpoint, access_key)
        parsed = parse_autorizacion(reply)
        logger.info(f"Autorización {env} clave={access_key}: {parsed.estado}")
        return to_canonical_result(parsed, access_key, environment=env)

    def query_status(self, access_key: str, env: Optional[str] = None) -> CanonicalResult:
        """
        Estado de un comprobante por clave de acceso

        Con ambiente explícito hace una sola consulta. Sin ambiente consulta
        test y prod en paralelo y elige AUTHORIZED > PROCESSING > NOT_AUTHORIZED,
        o el primero disponible.

        Args:
            access_key: clave de acceso (49 dígitos)
            env: 'test' | 'prod' | None

        Returns:
            CanonicalResult; validación y fallas de transporte vuelven como ERROR
        """
        key = (access_key or "").strip()
        if not is_clave_acceso_format(key):
            return CanonicalResult.error("Clave de acceso inválida: se esperan 49 dígitos", access_key=key or None)
        if env is not None and env not in SriConfig.ENVS:
            return CanonicalResult.error(f"Ambiente inválido: {env!r}. Debe ser 'test' o 'prod'", access_key=key)

        if env is None and not self.config.status_probe_both:
            env = self.infer_env(key)

        if env is not None:
            try:
                return self.poll(key, env)
            except TransportError as e:
                logger.warning(f"Consulta de autorización falló en {env}: {e.message}")
                return CanonicalResult.error(e.message, access_key=key, environment=env)

        return self._probe_both(key)

    def _probe_both(self, access_key: str) -> CanonicalResult:
        envs = SriConfig.ENVS
        results: Dict[str, CanonicalResult] = {}
        errors: Dict[str, str] = {}

        with ThreadPoolExecutor(max_workers=len(envs), thread_name_prefix="sri-status") as pool:
            futures = {env: pool.submit(self.poll, access_key, env) for env in envs}
            for env, future in futures.items():
                try:
                    results[env] = future.result()
                except TransportError as e:
                    logger.warning(f"Consulta de autorización falló en {env}: {e.message}")
                    errors[env] = e.message

        if not results:
            return CanonicalResult.error(
                *[f"{env}: {msg}" for env, msg in errors.items()],
                access_key=access_key,
            )

        for status in STATUS_PRIORITY:
            for env in envs:
                if env in results and results[env].status == status:
                    return results[env]

        return next(results[env] for env in envs if env in results)
