"""
Clave de idempotencia, huella de contenido y código numérico de la clave de acceso.
"""
import hashlib
import json
import re
from typing import Any, Dict, Mapping, Optional, Union

from app.sri_client.exceptions import ValidationError

from .models import Submission

IDEMPOTENCY_FIELD = "idempotency_key"
MIN_KEY_LEN = 6
NATURAL_KEY_SEP = "-"
NATURAL_KEY_FIELDS = ("ruc", "estab", "ptoEmi", "secuencial", "fechaEmision")

_NUMERIC_CODE_RE = re.compile(r"^\d{8}$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def _caller_key(value: Any) -> Optional[str]:
    if isinstance(value, str) and len(value.strip()) >= MIN_KEY_LEN:
        return value.strip()
    return None


def natural_key_fields(data: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    """
    Extrae ruc/estab/ptoEmi/secuencial/fechaEmision de un payload crudo.

    Acepta la forma canonical (infoTributaria/infoFactura) y la legacy
    (company/invoice, con issueDate ISO convertido a dd/mm/aaaa).
    """
    info_trib = data.get("infoTributaria")
    if isinstance(info_trib, Mapping):
        info_fact = data.get("infoFactura") if isinstance(data.get("infoFactura"), Mapping) else {}
        return {
            "ruc": info_trib.get("ruc"),
            "estab": info_trib.get("estab"),
            "ptoEmi": info_trib.get("ptoEmi"),
            "secuencial": info_trib.get("secuencial"),
            "fechaEmision": info_fact.get("fechaEmision"),
        }

    company = data.get("company")
    if isinstance(company, Mapping):
        invoice = data.get("invoice") if isinstance(data.get("invoice"), Mapping) else {}
        fecha = None
        m = _ISO_DATE_RE.match(str(invoice.get("issueDate") or ""))
        if m:
            fecha = f"{m.group(3)}/{m.group(2)}/{m.group(1)}"
        return {
            "ruc": company.get("ruc"),
            "estab": company.get("estab"),
            "ptoEmi": company.get("ptoEmi"),
            "secuencial": company.get("secuencial"),
            "fechaEmision": fecha,
        }

    return {name: None for name in NATURAL_KEY_FIELDS}


def derive_key(payload: Union[Submission, Mapping[str, Any]]) -> str:
    """
    Clave de idempotencia de una solicitud

    Usa la clave del cliente si tiene al menos 6 caracteres; si no, arma la
    clave natural ruc-estab-ptoEmi-secuencial-fechaEmision.

    Args:
        payload: Submission validada o dict crudo (para solicitudes inválidas)

    Returns:
        Clave de idempotencia

    Raises:
        ValidationError: si no hay clave del cliente ni campos de clave natural
    """
    if isinstance(payload, Submission):
        caller = _caller_key(payload.idempotency_key)
        fields = payload.key_fields
    else:
        caller = _caller_key(payload.get(IDEMPOTENCY_FIELD))
        fields = natural_key_fields(payload)

    if caller:
        return caller

    missing = [name for name in NATURAL_KEY_FIELDS if not fields.get(name)]
    if missing:
        raise ValidationError(
            f"No se puede derivar la clave de idempotencia: faltan {', '.join(missing)}"
        )
    return NATURAL_KEY_SEP.join(str(fields[name]).strip() for name in NATURAL_KEY_FIELDS)


def canonical_json(payload: Mapping[str, Any]) -> str:
    # sort_keys ordena también los objetos anidados
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def fingerprint(payload: Union[Submission, Mapping[str, Any]]) -> str:
    """SHA-256 del payload canónico, sin el campo idempotency_key."""
    data = payload.payload if isinstance(payload, Submission) else payload
    stripped = {k: v for k, v in data.items() if k != IDEMPOTENCY_FIELD}
    return hashlib.sha256(canonical_json(stripped).encode("utf-8")).hexdigest()


def derive_numeric_code(key: str, supplied: Optional[str] = None) -> str:
    """
    Código numérico de 8 dígitos para la clave de acceso.

    Estable para una misma clave: el SRI lo usa como parte de la unicidad
    del comprobante, así que un reintento debe reproducir la misma clave de acceso.
    """
    if supplied and _NUMERIC_CODE_RE.match(supplied):
        return supplied
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
    return str(int(digest, 16) % 10 ** 8).zfill(8)
