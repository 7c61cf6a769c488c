# sri_minisender/cert_resolver.py
# Resuelve el P12 de firma desde inline (base64), URL o ruta local.

from __future__ import annotations

import base64
import binascii
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import requests

from app.sri_client.exceptions import CertificateResolutionError

from .models import CertificateRef

logger = logging.getLogger(__name__)

SOURCE_INLINE = "inline"
SOURCE_URL = "url"
SOURCE_PATH = "path"


@dataclass(frozen=True)
class ResolvedCertificate:
    p12_base64: str
    password: str
    source: str


class CertificateResolver:
    """
    Obtiene el P12 en base64 a partir de un CertificateRef.

    Precedencia: p12_base64 > p12_url > p12_path. Lo descargado o leído de
    disco se cachea en memoria del proceso por URL/ruta.
    """

    def __init__(self, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def resolve(self, ref: CertificateRef) -> ResolvedCertificate:
        if ref.p12_base64:
            try:
                base64.b64decode(ref.p12_base64, validate=True)
            except (binascii.Error, ValueError) as e:
                raise CertificateResolutionError(f"p12_base64 no es base64 válido: {e}") from e
            return ResolvedCertificate(ref.p12_base64, ref.password, SOURCE_INLINE)

        if ref.p12_url:
            return ResolvedCertificate(self._cached(f"url:{ref.p12_url}", lambda: self._fetch(ref.p12_url)),
                                       ref.password, SOURCE_URL)

        if ref.p12_path:
            return ResolvedCertificate(self._cached(f"path:{ref.p12_path}", lambda: self._read(ref.p12_path)),
                                       ref.password, SOURCE_PATH)

        raise CertificateResolutionError("Certificado sin fuente (p12_base64, p12_url o p12_path)")

    def _cached(self, cache_key: str, loader) -> str:
        with self._lock:
            hit = self._cache.get(cache_key)
        if hit is not None:
            return hit
        data = loader()
        if not data:
            raise CertificateResolutionError(f"Certificado vacío ({cache_key})")
        encoded = base64.b64encode(data).decode("ascii")
        with self._lock:
            self._cache[cache_key] = encoded
        return encoded

    def _fetch(self, url: str) -> bytes:
        logger.info(f"Descargando certificado desde {url}")
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise CertificateResolutionError(f"No se pudo descargar el certificado ({type(e).__name__}: {e})") from e
        return resp.content

    def _read(self, path: str) -> bytes:
        p = Path(path).expanduser()
        try:
            return p.read_bytes()
        except OSError as e:
            raise CertificateResolutionError(f"No se pudo leer el certificado en {p}: {e}") from e
