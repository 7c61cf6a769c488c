"""
Cliente SOAP para los servicios offline del SRI (Recepción y Autorización).

Un Client de zeep por WSDL, cacheado; las respuestas se devuelven como dicts
planos (serialize_object) para que el resto del código no dependa de zeep.
"""
import logging
import threading
from typing import Any, Dict, Optional

import requests
from requests import Session
from zeep import Client, Settings
from zeep.exceptions import Fault, TransportError as ZeepTransportError, XMLSyntaxError
from zeep.helpers import serialize_object
from zeep.transports import Transport

from .exceptions import TransportError

logger = logging.getLogger(__name__)

SERVICE_RECEPCION = "recepcion"
SERVICE_AUTORIZACION = "autorizacion"


def _normalize_wsdl_url(wsdl_url: str) -> str:
    """Fuerza ?wsdl en URLs de servicio que no lo traen."""
    u = (wsdl_url or "").strip()
    if not u or "?" in u:
        return u
    return f"{u}?wsdl"


class SoapClient:
    """
    Transporte SRI sobre zeep

    Args:
        session: requests.Session a reutilizar (None => nueva)
        timeout: timeout en segundos para carga de WSDL y operaciones (None => el de zeep)
    """

    def __init__(self, session: Optional[Session] = None, timeout: Optional[float] = None):
        self.session = session or Session()
        self.timeout = timeout
        self.clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _create_transport(self) -> Transport:
        kwargs: Dict[str, Any] = {"session": self.session}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
            kwargs["operation_timeout"] = self.timeout
        return Transport(**kwargs)

    def _get_client(self, wsdl_url: str, service: str) -> Any:
        url = _normalize_wsdl_url(wsdl_url)
        with self._lock:
            if url in self.clients:
                return self.clients[url]

        logger.info(f"Cargando WSDL para servicio '{service}': {url}")
        try:
            client = Client(
                wsdl=url,
                transport=self._create_transport(),
                settings=Settings(strict=False, xml_huge_tree=True),
            )
        except (requests.RequestException, ZeepTransportError, XMLSyntaxError, OSError) as e:
            raise TransportError(f"No se pudo cargar WSDL de {service}: {e}", service=service) from e

        with self._lock:
            self.clients.setdefault(url, client)
            return self.clients[url]

    def _call(self, service: str, wsdl_url: str, operation: str, **kwargs) -> Dict[str, Any]:
        client = self._get_client(wsdl_url, service)
        try:
            result = getattr(client.service, operation)(**kwargs)
        except Fault as e:
            raise TransportError(f"SOAP Fault en {operation}: {e.message}", service=service) from e
        except (requests.RequestException, ZeepTransportError, XMLSyntaxError, OSError) as e:
            raise TransportError(f"Error de transporte en {operation}: {e}", service=service) from e

        data = serialize_object(result, dict)
        if data is None:
            return {}
        if not isinstance(data, dict):
            # Respuestas sin envoltorio: se conserva el valor bajo una clave fija
            return {"value": data}
        return data

    def submit(self, endpoint: str, signed_document: bytes) -> Dict[str, Any]:
        """
        Envía un comprobante firmado a Recepción (validarComprobante)

        Args:
            endpoint: URL WSDL de Recepción
            signed_document: XML firmado (bytes)

        Returns:
            Respuesta serializada como dict
        """
        logger.info(f"validarComprobante -> {endpoint} ({len(signed_document)} bytes)")
        # xs:base64Binary: zeep codifica los bytes al serializar
        return self._call(SERVICE_RECEPCION, endpoint, "validarComprobante", xml=signed_document)

    def check_authorization(self, endpoint: str, access_key: str) -> Dict[str, Any]:
        """
        Consulta Autorización por clave de acceso (autorizacionComprobante)

        Args:
            endpoint: URL WSDL de Autorización
            access_key: clave de acceso de 49 dígitos

        Returns:
            Respuesta serializada como dict
        """
        logger.info(f"autorizacionComprobante -> {endpoint} clave={access_key}")
        return self._call(
            SERVICE_AUTORIZACION,
            endpoint,
            "autorizacionComprobante",
            claveAccesoComprobante=access_key,
        )
