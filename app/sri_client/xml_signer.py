"""
Firma XAdES-BES de comprobantes SRI

Requisitos:
- Firma enveloped sobre el nodo raíz (id="comprobante")
- Certificado X.509 + clave privada RSA desde un archivo PKCS#12 (.p12)
- Propiedades firmadas XAdES (SigningTime, SigningCertificate)
"""
import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import List, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from lxml import etree
from signxml import methods
from signxml.exceptions import SignXMLException
from signxml.xades import XAdESSigner

from .exceptions import SigningError

logger = logging.getLogger(__name__)


def load_p12(p12_base64: str, password: str) -> Tuple[rsa.RSAPrivateKey, x509.Certificate, List[x509.Certificate]]:
    """
    Carga clave privada y certificados desde un P12 en base64

    Args:
        p12_base64: contenido del .p12 codificado en base64
        password: contraseña del P12

    Returns:
        (clave privada, certificado, certificados adicionales)

    Raises:
        SigningError: si el P12 no se puede leer o no trae clave/certificado
    """
    try:
        p12_bytes = base64.b64decode(p12_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SigningError(f"P12 no es base64 válido: {e}") from e

    try:
        private_key, certificate, additional = pkcs12.load_key_and_certificates(
            p12_bytes,
            password.encode("utf-8") if password else None,
        )
    except ValueError as e:
        raise SigningError(f"No se pudo abrir el P12 (contraseña o formato): {e}") from e

    if private_key is None:
        raise SigningError("No se pudo extraer la clave privada del certificado")
    if certificate is None:
        raise SigningError("No se pudo extraer el certificado del archivo")
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise SigningError("La clave privada debe ser RSA")
    return private_key, certificate, list(additional or [])


def _check_validity(certificate: x509.Certificate) -> None:
    now = datetime.now(timezone.utc)
    if certificate.not_valid_after_utc < now:
        raise SigningError(f"Certificado expirado. Válido hasta: {certificate.not_valid_after_utc}")
    if certificate.not_valid_before_utc > now:
        raise SigningError(f"Certificado aún no válido. Válido desde: {certificate.not_valid_before_utc}")


class XmlSigner:
    """Firma XAdES-BES enveloped con signxml"""

    def __init__(self, signature_algorithm: str = "rsa-sha256", digest_algorithm: str = "sha256"):
        self.signature_algorithm = signature_algorithm
        self.digest_algorithm = digest_algorithm

    def sign(self, xml: bytes, p12_base64: str, password: str) -> bytes:
        """
        Firma el comprobante

        Args:
            xml: comprobante sin firmar (bytes)
            p12_base64: P12 en base64
            password: contraseña del P12

        Returns:
            XML firmado (bytes, UTF-8, con declaración)
        """
        private_key, certificate, additional = load_p12(p12_base64, password)
        _check_validity(certificate)

        try:
            root = etree.fromstring(xml)
        except etree.XMLSyntaxError as e:
            raise SigningError(f"XML a firmar no es válido: {e}") from e

        cert_chain = [
            c.public_bytes(serialization.Encoding.PEM).decode("ascii")
            for c in [certificate] + additional
        ]

        signer = XAdESSigner(
            method=methods.enveloped,
            signature_algorithm=self.signature_algorithm,
            digest_algorithm=self.digest_algorithm,
            c14n_algorithm="http://www.w3.org/TR/2001/REC-xml-c14n-20010315",
        )
        try:
            signed_root = signer.sign(root, key=private_key, cert=cert_chain)
        except (SignXMLException, ValueError, TypeError) as e:
            raise SigningError(f"Error al firmar XML: {e}") from e

        signed = etree.tostring(signed_root, encoding="UTF-8", xml_declaration=True)
        logger.info(f"XML firmado (emisor cert: {certificate.issuer.rfc4514_string()})")
        return signed
