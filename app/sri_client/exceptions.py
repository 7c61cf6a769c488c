"""
Excepciones del cliente SRI y del orquestador de emisión
"""
from typing import Optional


class SriException(Exception):
    """Excepción base para errores SRI"""
    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ValidationError(SriException):
    """Entrada faltante o mal formada (no se hace ninguna llamada externa)"""
    def __init__(self, message: str, issues: Optional[list] = None):
        self.issues = issues or []
        super().__init__(message, "VALIDATION")


class CertificateResolutionError(SriException):
    """No se pudo obtener material de firma utilizable"""
    def __init__(self, message: str):
        super().__init__(message, "CERTIFICATE")


class SigningError(SriException):
    """Error al generar o firmar el comprobante"""
    def __init__(self, message: str):
        super().__init__(message, "SIGNING")


class TransportError(SriException):
    """Falla de red/protocolo al llamar a Recepción o Autorización"""
    def __init__(self, message: str, service: Optional[str] = None):
        self.service = service
        super().__init__(message, "TRANSPORT")


class RejectedBySubmission(SriException):
    """El SRI no acusó recepción del comprobante (estado distinto de RECIBIDA)"""
    def __init__(self, estado: Optional[str], messages: list):
        self.estado = estado
        self.messages = messages
        super().__init__(f"Comprobante no recibido (estado={estado!r})", "REJECTED")


class KeyConflictError(SriException):
    """Misma clave de idempotencia con contenido distinto"""
    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"La clave de idempotencia {key!r} ya fue usada con un contenido distinto",
            "KEY_CONFLICT",
        )


class UnknownInternalError(SriException):
    """Cualquier error no anticipado"""
    def __init__(self, message: str):
        super().__init__(message, "INTERNAL")
