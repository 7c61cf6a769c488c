"""
Generador de XML de factura (comprobante 01, versión 2.1.0) para el SRI

Recibe el modelo del comprobante como dict (infoTributaria, infoFactura,
detalles, infoAdicional) y devuelve el XML sin firmar junto con la clave de
acceso calculada. El orden de los elementos sigue el XSD factura_V2.1.0.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable

from lxml import etree

from .clave_acceso import build_clave_acceso
from .exceptions import SigningError

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "2.1.0"

INFO_TRIBUTARIA_ORDER = (
    "ambiente", "tipoEmision", "razonSocial", "nombreComercial", "ruc", "claveAcceso",
    "codDoc", "estab", "ptoEmi", "secuencial", "dirMatriz", "agenteRetencion",
    "contribuyenteRimpe",
)
INFO_FACTURA_HEAD = (
    "fechaEmision", "dirEstablecimiento", "contribuyenteEspecial", "obligadoContabilidad",
    "tipoIdentificacionComprador", "guiaRemision", "razonSocialComprador",
    "identificacionComprador", "direccionComprador", "totalSinImpuestos", "totalDescuento",
)
INFO_FACTURA_TAIL = ("propina", "importeTotal", "moneda")
TOTAL_IMPUESTO_ORDER = ("codigo", "codigoPorcentaje", "descuentoAdicional", "baseImponible", "tarifa", "valor")
PAGO_ORDER = ("formaPago", "total", "plazo", "unidadTiempo")
DETALLE_HEAD = (
    "codigoPrincipal", "codigoAuxiliar", "descripcion", "cantidad", "precioUnitario",
    "descuento", "precioTotalSinImpuesto",
)
IMPUESTO_ORDER = ("codigo", "codigoPorcentaje", "tarifa", "baseImponible", "valor")

# Campos con 6 decimales; el resto de montos van con 2
SIX_DECIMALS = {"cantidad", "precioUnitario"}
MONEY_FIELDS = {
    "totalSinImpuestos", "totalDescuento", "propina", "importeTotal", "baseImponible",
    "valor", "tarifa", "descuentoAdicional", "total", "descuento", "precioTotalSinImpuesto",
}


@dataclass(frozen=True)
class GeneratedDocument:
    xml: bytes
    access_key: str


def _format_value(name: str, value: Any) -> str:
    if isinstance(value, bool):
        return "SI" if value else "NO"
    if isinstance(value, (int, float)):
        if name in SIX_DECIMALS:
            return f"{float(value):.6f}"
        if name in MONEY_FIELDS:
            return f"{float(value):.2f}"
    return str(value)


def _append_fields(parent, data: Dict[str, Any], order: Iterable[str]) -> None:
    for name in order:
        value = data.get(name)
        if value is None or value == "":
            continue
        etree.SubElement(parent, name).text = _format_value(name, value)


class FacturaXmlGenerator:
    """Construye el XML de factura y su clave de acceso"""

    def generate(self, document: Dict[str, Any], numeric_code: str) -> GeneratedDocument:
        """
        Genera el XML sin firmar

        Args:
            document: modelo del comprobante (dict)
            numeric_code: código numérico de 8 dígitos para la clave de acceso

        Returns:
            GeneratedDocument con el XML (bytes, UTF-8) y la clave de acceso

        Raises:
            SigningError: si el modelo no permite construir el comprobante
        """
        try:
            info_trib = dict(document["infoTributaria"])
            info_fact = document["infoFactura"]
            detalles = document["detalles"]
        except (KeyError, TypeError) as e:
            raise SigningError(f"Modelo de comprobante incompleto: {e}") from e

        try:
            access_key = build_clave_acceso(
                fecha_emision=info_fact["fechaEmision"],
                cod_doc=info_trib.get("codDoc") or "01",
                ruc=info_trib["ruc"],
                ambiente=info_trib["ambiente"],
                estab=info_trib["estab"],
                pto_emi=info_trib["ptoEmi"],
                secuencial=info_trib["secuencial"],
                codigo_numerico=numeric_code,
                tipo_emision=info_trib.get("tipoEmision") or "1",
            )
        except (KeyError, ValueError) as e:
            raise SigningError(f"No se pudo calcular la clave de acceso: {e}") from e
        info_trib["claveAcceso"] = access_key

        root = etree.Element("factura", id="comprobante", version=document.get("version") or DEFAULT_VERSION)

        it = etree.SubElement(root, "infoTributaria")
        _append_fields(it, info_trib, INFO_TRIBUTARIA_ORDER)

        inf = etree.SubElement(root, "infoFactura")
        _append_fields(inf, info_fact, INFO_FACTURA_HEAD)
        tci = etree.SubElement(inf, "totalConImpuestos")
        for total in info_fact.get("totalConImpuestos") or []:
            _append_fields(etree.SubElement(tci, "totalImpuesto"), total, TOTAL_IMPUESTO_ORDER)
        _append_fields(inf, info_fact, INFO_FACTURA_TAIL)
        pagos = info_fact.get("pagos") or []
        if pagos:
            pagos_el = etree.SubElement(inf, "pagos")
            for pago in pagos:
                _append_fields(etree.SubElement(pagos_el, "pago"), pago, PAGO_ORDER)

        det_el = etree.SubElement(root, "detalles")
        for detalle in detalles:
            d = etree.SubElement(det_el, "detalle")
            _append_fields(d, detalle, DETALLE_HEAD)
            imps = etree.SubElement(d, "impuestos")
            for imp in detalle.get("impuestos") or []:
                _append_fields(etree.SubElement(imps, "impuesto"), imp, IMPUESTO_ORDER)

        campos = (document.get("infoAdicional") or {}).get("campos") or []
        if campos:
            ia = etree.SubElement(root, "infoAdicional")
            for campo in campos:
                c = etree.SubElement(ia, "campoAdicional", nombre=str(campo["nombre"]))
                c.text = str(campo["valor"])

        xml = etree.tostring(root, encoding="UTF-8", xml_declaration=True)
        logger.info(f"Factura generada clave={access_key} ({len(detalles)} detalles)")
        return GeneratedDocument(xml=xml, access_key=access_key)
