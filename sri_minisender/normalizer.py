"""
Interpretación de respuestas del SRI (Recepción y Autorización).

Las respuestas llegan como dicts (zeep serializado o equivalente) y su forma
varía entre versiones del servicio. Cada campo se busca en una lista ordenada
de rutas candidatas; la primera que exista gana.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .models import (
    CanonicalResult,
    STATUS_AUTHORIZED,
    STATUS_NOT_AUTHORIZED,
    STATUS_PROCESSING,
)

logger = logging.getLogger(__name__)

ESTADO_AUTORIZADO = "AUTORIZADO"
ESTADO_NO_AUTORIZADO = "NO AUTORIZADO"
ESTADO_PENDIENTE = "PENDIENTE"
ESTADO_DESCONOCIDO = "DESCONOCIDO"
ESTADO_RECIBIDA = "RECIBIDA"

MSG_PENDIENTE = "Sin autorización disponible (pendiente o no encontrado)."
MSG_NO_AUTORIZADO_SIN_DETALLE = "No autorizado sin mensaje específico"

# Estado de la respuesta de validarComprobante, en orden de prueba:
RECEPCION_ESTADO_PATHS: Tuple[Tuple[str, ...], ...] = (
    # node-soap / clientes que conservan el nombre del elemento en minúscula
    ("respuestaRecepcionComprobante", "estado"),
    # elemento raíz de la respuesta según el WSDL
    ("RespuestaRecepcionComprobante", "estado"),
    # respuestas que sólo traen el estado por comprobante
    ("RespuestaRecepcionComprobante", "comprobantes", "comprobante", "estado"),
    # zeep serializado: el contenido de RespuestaSolicitud queda en la raíz
    ("estado",),
)

# Raíz de la respuesta de autorizacionComprobante:
AUTORIZACION_ROOT_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("RespuestaAutorizacionComprobante",),
    ("respuestaAutorizacionComprobante",),
    (),
)

_CDATA_RE = re.compile(r"<!\[CDATA\[([\s\S]*?)\]\]>")


def _get_path(data: Any, path: Sequence[str]) -> Any:
    node = data
    for key in path:
        if isinstance(node, list):
            node = node[0] if node else None
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _first_path(data: Any, paths: Iterable[Sequence[str]]) -> Any:
    for path in paths:
        value = _get_path(data, path)
        if value is not None:
            return value
    return None


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def unwrap_cdata(value: Any) -> str:
    """Contenido del primer CDATA; sin CDATA, el valor recortado."""
    raw = "" if value is None else str(value)
    m = _CDATA_RE.search(raw)
    return (m.group(1) if m else raw).strip()


def format_mensaje(mensaje: Any) -> str:
    """identificador: mensaje: informacionAdicional (sólo campos no vacíos)"""
    if not isinstance(mensaje, dict):
        return _text(mensaje)
    parts = [
        _text(mensaje.get("identificador")),
        _text(mensaje.get("mensaje")),
        _text(mensaje.get("informacionAdicional")),
    ]
    return ": ".join(p for p in parts if p)


# ---------------------------------------------------------------------------
# Recepción
# ---------------------------------------------------------------------------

def estado_recepcion(reply: Any) -> Optional[str]:
    value = _first_path(reply, RECEPCION_ESTADO_PATHS)
    estado = _text(value).upper()
    return estado or None


def is_recibida(reply: Any) -> bool:
    return estado_recepcion(reply) == ESTADO_RECIBIDA


def _walk_mensajes(node: Any, out: List[str]) -> None:
    if isinstance(node, list):
        for item in node:
            _walk_mensajes(item, out)
        return
    if not isinstance(node, dict):
        return
    if isinstance(node.get("mensaje"), str) or "identificador" in node:
        line = format_mensaje(node)
        if line:
            out.append(line)
        return
    for value in node.values():
        _walk_mensajes(value, out)


def extract_mensajes(reply: Any) -> List[str]:
    """
    Recorre la respuesta y devuelve las líneas de diagnóstico legibles.

    Una entrada de mensaje es cualquier objeto con ``mensaje`` de texto o con
    ``identificador``.
    """
    out: List[str] = []
    _walk_mensajes(reply, out)
    return out


def rejection_messages(reply: Any) -> List[str]:
    """Mensajes para una recepción no aceptada"""
    messages: List[str] = []
    estado = estado_recepcion(reply)
    if estado and estado != ESTADO_RECIBIDA:
        messages.append(f"Estado recepción: {estado}")
    extracted = extract_mensajes(reply)
    if extracted:
        messages.extend(extracted)
    else:
        messages.append(json.dumps(reply, ensure_ascii=False, default=str, sort_keys=True))
    return messages


# ---------------------------------------------------------------------------
# Autorización
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AutorizacionParseada:
    estado: str
    numero: str = ""
    fecha: str = ""
    comprobante: str = ""
    error_msg: str = ""
    estado_original: str = ""

    @property
    def autorizado(self) -> bool:
        return self.estado == ESTADO_AUTORIZADO


def parse_autorizacion(reply: Any) -> AutorizacionParseada:
    """
    Reduce una respuesta de autorizacionComprobante a un resultado único

    Args:
        reply: respuesta cruda (dict)

    Returns:
        AutorizacionParseada con estado AUTORIZADO | NO AUTORIZADO | PENDIENTE | DESCONOCIDO
    """
    raiz = None
    for path in AUTORIZACION_ROOT_PATHS:
        candidate = _get_path(reply, path) if path else reply
        if isinstance(candidate, dict):
            raiz = candidate
            break
    raiz = raiz or {}

    numero_comprobantes = _text(raiz.get("numeroComprobantes"))
    aut_root = _get_path(raiz, ("autorizaciones", "autorizacion"))
    autorizaciones = _as_list(aut_root)

    # Pendiente y "no encontrado todavía" son indistinguibles
    if not autorizaciones or numero_comprobantes == "0":
        return AutorizacionParseada(estado=ESTADO_PENDIENTE, error_msg=MSG_PENDIENTE)

    if len(autorizaciones) > 1:
        logger.info(f"Respuesta con {len(autorizaciones)} autorizaciones; se usa la primera")
    first = autorizaciones[0] if isinstance(autorizaciones[0], dict) else {}

    estado_original = _text(first.get("estado")).upper()
    estado = estado_original or ESTADO_DESCONOCIDO
    if estado not in (ESTADO_AUTORIZADO, ESTADO_NO_AUTORIZADO):
        estado = ESTADO_DESCONOCIDO

    numero = _text(first.get("numeroAutorizacion"))
    fecha = _text(first.get("fechaAutorizacion"))

    comprobante = ""
    if estado == ESTADO_AUTORIZADO and first.get("comprobante") is not None:
        comprobante = unwrap_cdata(first.get("comprobante"))

    error_msg = ""
    if estado == ESTADO_NO_AUTORIZADO:
        mensajes = _as_list(_get_path(first, ("mensajes", "mensaje")))
        lines = [format_mensaje(m) for m in mensajes]
        lines = [line for line in lines if line]
        error_msg = " | ".join(lines) if lines else MSG_NO_AUTORIZADO_SIN_DETALLE

    return AutorizacionParseada(
        estado=estado,
        numero=numero,
        fecha=fecha,
        comprobante=comprobante,
        error_msg=error_msg,
        estado_original=estado_original,
    )


def to_status(estado: str) -> str:
    if estado == ESTADO_AUTORIZADO:
        return STATUS_AUTHORIZED
    if estado == ESTADO_NO_AUTORIZADO:
        return STATUS_NOT_AUTHORIZED
    return STATUS_PROCESSING


def to_canonical_result(parsed: AutorizacionParseada, access_key: str, **kwargs) -> CanonicalResult:
    """
    Arma el CanonicalResult de una autorización interpretada

    kwargs se pasan tal cual (environment, signed_document, payload_hash).
    """
    if parsed.estado == ESTADO_AUTORIZADO:
        messages: List[str] = []
    elif parsed.estado == ESTADO_NO_AUTORIZADO:
        messages = [parsed.error_msg]
    elif parsed.estado == ESTADO_PENDIENTE:
        messages = [MSG_PENDIENTE]
    else:
        messages = [f"Estado de autorización desconocido: {parsed.estado_original or 'vacío'}"]

    return CanonicalResult(
        status=to_status(parsed.estado),
        access_key=access_key,
        authorization_number=parsed.numero or None,
        authorization_date=parsed.fecha or None,
        authorized_document=parsed.comprobante.encode("utf-8") if parsed.comprobante else None,
        messages=tuple(messages),
        **kwargs,
    )
