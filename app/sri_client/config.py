"""
Configuración para cliente SRI (Recepción / Autorización de comprobantes offline)
"""
import os
from typing import Optional, Dict, Any

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} debe ser un entero. Recibido: {raw!r}")


def _env_float(name: str) -> Optional[float]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} debe ser numérico. Recibido: {raw!r}")


def _env_flag(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "si", "on")


class SriConfig:
    """Configuración del cliente SRI para ambos ambientes"""

    ENV_TEST = "test"
    ENV_PROD = "prod"
    ENVS = (ENV_TEST, ENV_PROD)

    # Servicios web offline (SOAP 1.1), según Ficha Técnica de Comprobantes Electrónicos
    DEFAULT_WSDL = {
        "test": {
            "recepcion": "https://celcer.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl",
            "autorizacion": "https://celcer.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl",
        },
        "prod": {
            "recepcion": "https://cel.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl",
            "autorizacion": "https://cel.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl",
        },
    }

    # TTLs de la caché de idempotencia (segundos)
    DEFAULT_TTL_ERROR = 60 * 60
    DEFAULT_TTL_PROCESSING = 2 * 60
    DEFAULT_TTL_FINAL = 24 * 60 * 60

    def __init__(self):
        self.wsdl = {
            "test": {
                "recepcion": os.getenv("SRI_RECEPCION_TEST") or self.DEFAULT_WSDL["test"]["recepcion"],
                "autorizacion": os.getenv("SRI_AUTORIZACION_TEST") or self.DEFAULT_WSDL["test"]["autorizacion"],
            },
            "prod": {
                "recepcion": os.getenv("SRI_RECEPCION_PROD") or self.DEFAULT_WSDL["prod"]["recepcion"],
                "autorizacion": os.getenv("SRI_AUTORIZACION_PROD") or self.DEFAULT_WSDL["prod"]["autorizacion"],
            },
        }

        default_env = (os.getenv("SRI_DEFAULT_ENV") or self.ENV_TEST).strip().lower()
        if default_env not in self.ENVS:
            raise ValueError(f"SRI_DEFAULT_ENV inválido: {default_env!r}. Debe ser 'test' o 'prod'")
        self.default_env = default_env

        # Caché compartida (Redis). Vacío => caché en memoria del proceso
        self.redis_url: Optional[str] = (os.getenv("SRI_REDIS_URL") or "").strip() or None

        self.ttl_error = _env_int("SRI_TTL_ERROR", self.DEFAULT_TTL_ERROR)
        self.ttl_processing = _env_int("SRI_TTL_PROCESSING", self.DEFAULT_TTL_PROCESSING)
        self.ttl_final = _env_int("SRI_TTL_FINAL", self.DEFAULT_TTL_FINAL)
        self.cache_sweep_interval = _env_int("SRI_CACHE_SWEEP_INTERVAL", 60 * 60)

        self.idempotency_strict = _env_flag("SRI_IDEMPOTENCY_STRICT", False)
        self.status_probe_both = _env_flag("SRI_STATUS_PROBE_BOTH", True)

        # Sin timeout propio por defecto: lo decide el transporte
        self.soap_timeout = _env_float("SRI_SOAP_TIMEOUT")
        self.cert_fetch_timeout = _env_float("SRI_CERT_FETCH_TIMEOUT")

    def get_wsdl_url(self, env: str, service: str) -> str:
        """
        Obtiene la URL WSDL de un servicio

        Args:
            env: Ambiente ('test' o 'prod')
            service: 'recepcion' o 'autorizacion'

        Returns:
            URL del WSDL
        """
        if env not in self.ENVS:
            raise ValueError(f"Ambiente inválido: {env}. Debe ser 'test' o 'prod'")
        if service not in ("recepcion", "autorizacion"):
            raise ValueError(f"Servicio SRI inválido: {service}")
        return self.wsdl[env][service]

    def describe(self) -> Dict[str, Any]:
        """Resumen de configuración sin exponer URLs ni secretos"""
        out: Dict[str, Any] = {}
        for env in self.ENVS:
            out[env] = {
                "recepcion": "Configurada" if os.getenv(f"SRI_RECEPCION_{env.upper()}") else "Por defecto",
                "autorizacion": "Configurada" if os.getenv(f"SRI_AUTORIZACION_{env.upper()}") else "Por defecto",
            }
        out["default_env"] = self.default_env
        out["cache"] = "redis" if self.redis_url else "memoria"
        return out


def get_sri_config() -> SriConfig:
    """
    Obtiene la configuración SRI desde variables de entorno

    Returns:
        Configuración SRI
    """
    return SriConfig()
