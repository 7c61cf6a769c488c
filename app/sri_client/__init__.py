"""
Módulo cliente para los servicios web offline del SRI
Ecuador - Recepción y Autorización de comprobantes electrónicos
"""
from .config import SriConfig, get_sri_config
from .clave_acceso import build_clave_acceso, calc_dv_mod11, is_clave_acceso_valid
from .soap_client import SoapClient
from .xml_generator import FacturaXmlGenerator, GeneratedDocument
from .xml_signer import XmlSigner
from .exceptions import (
    SriException,
    ValidationError,
    CertificateResolutionError,
    SigningError,
    TransportError,
    RejectedBySubmission,
    KeyConflictError,
    UnknownInternalError,
)

__all__ = [
    'SriConfig',
    'get_sri_config',
    'build_clave_acceso',
    'calc_dv_mod11',
    'is_clave_acceso_valid',
    'SoapClient',
    'FacturaXmlGenerator',
    'GeneratedDocument',
    'XmlSigner',
    'SriException',
    'ValidationError',
    'CertificateResolutionError',
    'SigningError',
    'TransportError',
    'RejectedBySubmission',
    'KeyConflictError',
    'UnknownInternalError',
]
