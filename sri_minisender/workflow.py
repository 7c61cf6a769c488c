"""
Orquestación de una emisión: validar, deduplicar, firmar, enviar y consultar.

Estados de una emisión (cada transición se registra en el log):

    RECEIVED -> FINGERPRINTED -> (caché: devuelve) -> CERT_RESOLVED
    -> DOCUMENT_SIGNED -> SUBMITTED -> AUTHORIZATION_POLLED -> NORMALIZED

Qué se cachea:
    - validación fallida: ERROR, sólo si se puede derivar la clave
    - recepción rechazada (estado != RECIBIDA): ERROR
    - resultado de Autorización: con el TTL de su estado
    - certificado, firma, transporte e inesperados: nunca
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.sri_client.config import SriConfig, get_sri_config
from app.sri_client.exceptions import (
    CertificateResolutionError,
    KeyConflictError,
    RejectedBySubmission,
    SigningError,
    TransportError,
    UnknownInternalError,
    ValidationError,
)
from app.sri_client.soap_client import SoapClient
from app.sri_client.xml_generator import FacturaXmlGenerator
from app.sri_client.xml_signer import XmlSigner

from .cert_resolver import CertificateResolver
from .environment import AMBIENTE_ENV, EnvironmentResolver
from .fingerprint import derive_key, derive_numeric_code, fingerprint
from .idempotency import IdempotencyCache
from .models import STATUS_ERROR, CanonicalResult, Submission, parse_request
from .normalizer import estado_recepcion, is_recibida, parse_autorizacion, rejection_messages, to_canonical_result

logger = logging.getLogger(__name__)

RECEIVED = "RECEIVED"
FINGERPRINTED = "FINGERPRINTED"
CERT_RESOLVED = "CERT_RESOLVED"
DOCUMENT_SIGNED = "DOCUMENT_SIGNED"
SUBMITTED = "SUBMITTED"
AUTHORIZATION_POLLED = "AUTHORIZATION_POLLED"
NORMALIZED = "NORMALIZED"


@dataclass
class _Attempt:
    """Lo que se va sabiendo de una emisión en curso"""
    key: Optional[str] = None
    payload_hash: Optional[str] = None
    env: Optional[str] = None
    access_key: Optional[str] = None
    signed_document: Optional[bytes] = None

    def error(self, *messages: str) -> CanonicalResult:
        return CanonicalResult.error(
            *messages,
            access_key=self.access_key,
            signed_document=self.signed_document,
            environment=self.env,
            payload_hash=self.payload_hash,
        )


def _issue_lines(issues: List[Dict[str, Any]]) -> List[str]:
    lines = []
    for issue in issues:
        prefix = f"[{issue['variant']}] " if issue.get("variant") else ""
        lines.append(f"{prefix}{issue.get('loc')}: {issue.get('msg')}")
    return lines


class SubmissionWorkflow:
    """
    Emisión idempotente de comprobantes

    Args:
        cache: IdempotencyCache
        transport: submit(endpoint, bytes) / check_authorization(endpoint, clave)
        generator: generate(document, numeric_code) -> GeneratedDocument
        signer: sign(xml, p12_base64, password) -> bytes
        resolver: EnvironmentResolver
        cert_resolver: CertificateResolver
        config: SriConfig (None => desde el entorno)
    """

    def __init__(self, cache, transport, generator, signer, resolver, cert_resolver,
                 config: Optional[SriConfig] = None):
        self.cache = cache
        self.transport = transport
        self.generator = generator
        self.signer = signer
        self.resolver = resolver
        self.cert_resolver = cert_resolver
        self.config = config or get_sri_config()

    def _state(self, attempt: _Attempt, state: str, detail: str = "") -> None:
        suffix = f" {detail}" if detail else ""
        logger.info(f"[{attempt.key or '-'}] {state}{suffix}")

    def _env_for(self, submission: Submission) -> str:
        if submission.env:
            return submission.env
        return AMBIENTE_ENV.get(submission.ambiente or "", self.config.default_env)

    def emit(self, payload: Any) -> CanonicalResult:
        """
        Emite un comprobante

        Args:
            payload: dict en cualquiera de las variantes aceptadas

        Returns:
            CanonicalResult; nunca lanza
        """
        attempt = _Attempt()
        try:
            return self._emit(payload, attempt)
        except Exception as e:
            logger.exception(f"[{attempt.key or '-'}] Error inesperado en emisión")
            return attempt.error(UnknownInternalError(f"{type(e).__name__}: {e}").message)

    def _emit(self, payload: Any, attempt: _Attempt) -> CanonicalResult:
        self._state(attempt, RECEIVED)
        try:
            submission = parse_request(payload)
        except ValidationError as e:
            return self._validation_failed(payload, e)

        try:
            attempt.key = derive_key(submission)
        except ValidationError as e:
            logger.warning(f"Sin clave de idempotencia derivable: {e.message}")
            return CanonicalResult.error(e.message)
        attempt.payload_hash = fingerprint(submission)
        self._state(attempt, FINGERPRINTED, f"variant={submission.variant} hash={attempt.payload_hash[:12]}")

        cached = self.cache.get(attempt.key)
        if cached is not None:
            if cached.content_fingerprint == attempt.payload_hash:
                logger.info(f"[{attempt.key}] Reintento idempotente: devolviendo {cached.result.status} de caché")
                return cached.result
            # Un ERROR previo no bloquea la clave: el SRI no conoce ese contenido
            if self.config.idempotency_strict and cached.result.status != STATUS_ERROR:
                conflict = KeyConflictError(attempt.key)
                logger.warning(f"[{attempt.key}] {conflict.message}")
                return attempt.error(conflict.message)
            logger.warning(
                f"[{attempt.key}] Clave reutilizada con contenido distinto; se emite de nuevo y se reemplaza la entrada"
            )

        attempt.env = self._env_for(submission)
        try:
            return self._process(submission, attempt)
        except (CertificateResolutionError, SigningError, TransportError) as e:
            logger.warning(f"[{attempt.key}] {type(e).__name__}: {e.message} (no se cachea)")
            return attempt.error(e.message)
        except RejectedBySubmission as e:
            result = attempt.error(*e.messages)
            self.cache.set(attempt.key, result, attempt.payload_hash)
            return result

    def _validation_failed(self, payload: Any, error: ValidationError) -> CanonicalResult:
        result = CanonicalResult.error(error.message, *_issue_lines(error.issues))
        if not isinstance(payload, dict):
            return result
        try:
            key = derive_key(payload)
        except ValidationError:
            logger.info(f"Validación fallida sin clave derivable: {error.message}")
            return result
        logger.info(f"[{key}] Validación fallida: {error.message}")
        # Nunca se reemplaza un resultado de Autorización por un ERROR de validación
        cached = self.cache.get(key)
        if cached is not None and cached.result.status != STATUS_ERROR:
            logger.warning(f"[{key}] Entrada {cached.result.status} en caché conservada")
            return result
        self.cache.set(key, result, fingerprint(payload))
        return result

    def _process(self, submission: Submission, attempt: _Attempt) -> CanonicalResult:
        cert = self.cert_resolver.resolve(submission.certificate)
        self._state(attempt, CERT_RESOLVED, f"source={cert.source}")

        if submission.raw_xml is not None:
            xml = submission.raw_xml.encode("utf-8")
            attempt.access_key = submission.access_key
        else:
            numeric_code = derive_numeric_code(attempt.key, submission.numeric_code)
            generated = self.generator.generate(submission.document, numeric_code)
            xml = generated.xml
            attempt.access_key = generated.access_key
        attempt.signed_document = self.signer.sign(xml, cert.p12_base64, cert.password)
        self._state(attempt, DOCUMENT_SIGNED, f"clave={attempt.access_key}")

        endpoints = self.resolver.resolve(attempt.env)
        reply = self.transport.submit(endpoints.recepcion, attempt.signed_document)
        estado = estado_recepcion(reply)
        self._state(attempt, SUBMITTED, f"env={attempt.env} estado={estado}")
        if not is_recibida(reply):
            raise RejectedBySubmission(estado, rejection_messages(reply))

        auth_reply = self.transport.check_authorization(endpoints.autorizacion, attempt.access_key)
        self._state(attempt, AUTHORIZATION_POLLED)

        parsed = parse_autorizacion(auth_reply)
        result = to_canonical_result(
            parsed,
            attempt.access_key,
            signed_document=attempt.signed_document,
            environment=attempt.env,
            payload_hash=attempt.payload_hash,
        )
        self._state(attempt, NORMALIZED, f"estado={parsed.estado} status={result.status}")
        self.cache.set(attempt.key, result, attempt.payload_hash)
        return result

    def status(self, access_key: str, env: Optional[str] = None) -> CanonicalResult:
        """Estado de un comprobante por clave de acceso (sin caché)"""
        try:
            return self.resolver.query_status(access_key, env)
        except Exception as e:
            logger.exception(f"Error inesperado consultando {access_key}")
            return CanonicalResult(
                status=STATUS_ERROR,
                access_key=access_key,
                messages=(UnknownInternalError(f"{type(e).__name__}: {e}").message,),
            )


def build_workflow(config: Optional[SriConfig] = None, **cache_kwargs) -> SubmissionWorkflow:
    """Workflow con los colaboradores reales (zeep, lxml, signxml, Redis/memoria)"""
    config = config or get_sri_config()
    transport = SoapClient(timeout=config.soap_timeout)
    return SubmissionWorkflow(
        cache=IdempotencyCache.from_config(config, **cache_kwargs),
        transport=transport,
        generator=FacturaXmlGenerator(),
        signer=XmlSigner(),
        resolver=EnvironmentResolver(config, transport),
        cert_resolver=CertificateResolver(timeout=config.cert_fetch_timeout),
        config=config,
    )
