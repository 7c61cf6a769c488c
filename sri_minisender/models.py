"""
Modelos de entrada (variantes validadas) y resultado canónico de emisión.

Se aceptan tres formas de payload, cada una con su modelo pydantic:

- ``canonical``: campos con los nombres del esquema SRI (infoTributaria, infoFactura, ...)
- ``legacy``: formato company/invoice de la API v1, convertido a canonical
- ``raw_document``: XML de comprobante ya generado (sin firmar)

``parse_request`` valida y devuelve siempre un ``Submission``, que es lo único
que ve el workflow.
"""
import base64
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional, Tuple

from lxml import etree
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from app.sri_client.clave_acceso import ambiente_digit, is_clave_acceso_format
from app.sri_client.exceptions import ValidationError

logger = logging.getLogger(__name__)

STATUS_AUTHORIZED = "AUTHORIZED"
STATUS_PROCESSING = "PROCESSING"
STATUS_NOT_AUTHORIZED = "NOT_AUTHORIZED"
STATUS_ERROR = "ERROR"
STATUSES = (STATUS_AUTHORIZED, STATUS_PROCESSING, STATUS_NOT_AUTHORIZED, STATUS_ERROR)

DEFAULT_VERSION = "2.1.0"

# Tarifa IVA -> codigoPorcentaje (tabla 17 de la ficha técnica)
IVA_CODIGO_PORCENTAJE = {0: "0", 12: "2", 14: "3", 15: "4", 5: "5", 13: "10"}

AMBIENTE_POR_ENV = {"test": "1", "prod": "2"}


def _round2(n: float) -> float:
    return round(n + 1e-9, 2)


def _check_env_ambiente(env: Optional[str], ambiente: Optional[str], origen: str) -> None:
    if env is not None and ambiente is not None and AMBIENTE_POR_ENV[env] != ambiente:
        raise ValueError(f"env={env} no coincide con ambiente={ambiente} de {origen}")


# ---------------------------------------------------------------------------
# Certificado
# ---------------------------------------------------------------------------

class CertificateRef(BaseModel):
    """Referencia al P12 de firma: inline (base64) > URL > ruta local"""

    model_config = ConfigDict(extra="forbid")

    p12_base64: Optional[str] = Field(default=None, min_length=1)
    p12_url: Optional[str] = Field(default=None, min_length=1)
    p12_path: Optional[str] = Field(default=None, min_length=1)
    password: str = Field(min_length=1)

    @model_validator(mode="after")
    def _require_source(self):
        if not (self.p12_base64 or self.p12_url or self.p12_path):
            raise ValueError("certificate requiere p12_base64, p12_url o p12_path")
        return self


# ---------------------------------------------------------------------------
# Formato canonical (esquema SRI)
# ---------------------------------------------------------------------------

class InfoTributaria(BaseModel):
    ambiente: str = Field(pattern=r"^[12]$")
    tipoEmision: str = "1"
    razonSocial: str = Field(min_length=1)
    nombreComercial: Optional[str] = None
    ruc: str = Field(pattern=r"^\d{13}$")
    codDoc: str = "01"
    estab: str = Field(pattern=r"^\d{3}$")
    ptoEmi: str = Field(pattern=r"^\d{3}$")
    secuencial: str = Field(pattern=r"^\d{9}$")
    dirMatriz: str = Field(min_length=1)
    agenteRetencion: Optional[str] = None
    contribuyenteRimpe: Optional[str] = None


class TotalImpuesto(BaseModel):
    codigo: str
    codigoPorcentaje: str
    baseImponible: float
    valor: float
    tarifa: Optional[float] = None
    descuentoAdicional: Optional[float] = None


class Pago(BaseModel):
    formaPago: str
    total: float
    plazo: Optional[str] = None
    unidadTiempo: Optional[str] = None


class InfoFactura(BaseModel):
    fechaEmision: str = Field(pattern=r"^\d{2}/\d{2}/\d{4}$")
    dirEstablecimiento: str
    contribuyenteEspecial: Optional[str] = None
    obligadoContabilidad: Optional[str] = None
    tipoIdentificacionComprador: str
    razonSocialComprador: str
    identificacionComprador: str
    direccionComprador: Optional[str] = None
    totalSinImpuestos: float
    totalDescuento: float
    totalConImpuestos: List[TotalImpuesto]
    propina: Optional[float] = None
    importeTotal: float
    moneda: Optional[str] = None
    pagos: List[Pago]


class Impuesto(BaseModel):
    codigo: str
    codigoPorcentaje: str
    tarifa: Optional[float] = None
    baseImponible: Optional[float] = None
    valor: Optional[float] = None


class Detalle(BaseModel):
    codigoPrincipal: str
    codigoAuxiliar: Optional[str] = None
    descripcion: str
    cantidad: float
    precioUnitario: float
    descuento: Optional[float] = None
    precioTotalSinImpuesto: float
    impuestos: List[Impuesto]


class CampoAdicional(BaseModel):
    nombre: str
    valor: str


class InfoAdicional(BaseModel):
    campos: List[CampoAdicional]


class FacturaRequest(BaseModel):
    """Payload canonical: los campos del comprobante tal como los define el SRI"""

    kind: Literal["canonical"] = "canonical"
    idempotency_key: Optional[str] = Field(default=None, min_length=6)
    env: Optional[Literal["test", "prod"]] = None
    numeric_code: Optional[str] = Field(default=None, pattern=r"^\d{8}$")
    version: str = DEFAULT_VERSION
    certificate: CertificateRef
    infoTributaria: InfoTributaria
    infoFactura: InfoFactura
    detalles: List[Detalle] = Field(min_length=1)
    infoAdicional: Optional[InfoAdicional] = None

    @model_validator(mode="after")
    def _check_env(self):
        _check_env_ambiente(self.env, self.infoTributaria.ambiente, "infoTributaria")
        return self

    def document(self) -> Dict[str, Any]:
        """Modelo del comprobante para el generador XML"""
        return self.model_dump(
            mode="json",
            exclude_none=True,
            include={"version", "infoTributaria", "infoFactura", "detalles", "infoAdicional"},
        )

    def key_fields(self) -> Dict[str, str]:
        return {
            "ruc": self.infoTributaria.ruc,
            "estab": self.infoTributaria.estab,
            "ptoEmi": self.infoTributaria.ptoEmi,
            "secuencial": self.infoTributaria.secuencial,
            "fechaEmision": self.infoFactura.fechaEmision,
        }

    def to_submission(self) -> "Submission":
        return Submission(
            variant="canonical",
            payload=self.model_dump(mode="json", exclude_none=True, exclude={"kind"}),
            certificate=self.certificate,
            env=self.env,
            numeric_code=self.numeric_code,
            idempotency_key=self.idempotency_key,
            key_fields=self.key_fields(),
            ambiente=self.infoTributaria.ambiente,
            document=self.document(),
        )


# ---------------------------------------------------------------------------
# Formato legacy (API v1: company / invoice)
# ---------------------------------------------------------------------------

class LegacyCompany(BaseModel):
    id: Optional[str] = None
    ruc: str = Field(pattern=r"^\d{13}$")
    estab: str = Field(pattern=r"^\d{3}$")
    ptoEmi: str = Field(pattern=r"^\d{3}$")
    secuencial: str = Field(pattern=r"^\d{9}$")
    razonSocial: str = Field(min_length=1)
    nombreComercial: Optional[str] = None
    dirMatriz: str = Field(min_length=1)
    dirEstablecimiento: str = Field(min_length=1)
    contribuyenteRimpe: Optional[str] = None
    obligadoContabilidad: Optional[Literal["SI", "NO"]] = None


class LegacyBuyer(BaseModel):
    idType: str
    id: str
    name: str
    email: Optional[str] = None
    address: Optional[str] = None


class LegacyPayment(BaseModel):
    code: str
    amount: float


class LegacyTotals(BaseModel):
    # subtotal_<tarifa> adicionales (subtotal_12, subtotal_15, ...) quedan en extras
    model_config = ConfigDict(extra="allow")

    subtotal_0: float
    total_discount: float
    total: float
    payments: List[LegacyPayment] = Field(min_length=1)

    def taxed_subtotals(self) -> List[Tuple[int, float]]:
        out = []
        for key, value in (self.model_extra or {}).items():
            if not key.startswith("subtotal_"):
                continue
            try:
                rate = int(key.split("_", 1)[1])
                amount = float(value)
            except (TypeError, ValueError):
                raise ValueError(f"Total inválido: {key}={value!r}")
            if rate != 0:
                out.append((rate, amount))
        return sorted(out)


class LegacyTax(BaseModel):
    type_code: str
    rate: float


class LegacyItem(BaseModel):
    code: str
    description: str
    qty: float = Field(gt=0)
    unit_price: float = Field(ge=0)
    discount: Optional[float] = None
    taxes: Optional[List[LegacyTax]] = None


class LegacyAdditional(BaseModel):
    name: str
    value: str


class LegacyInvoice(BaseModel):
    issueDate: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}")
    buyer: LegacyBuyer
    totals: LegacyTotals
    items: List[LegacyItem] = Field(min_length=1)
    additional: Optional[List[LegacyAdditional]] = None


class LegacyEmitRequest(BaseModel):
    """Payload de la API v1 (company/invoice); se convierte a canonical"""

    kind: Literal["legacy"] = "legacy"
    idempotency_key: str = Field(min_length=6)
    env: Literal["test", "prod"]
    numeric_code: Optional[str] = Field(default=None, pattern=r"^\d{8}$")
    company: LegacyCompany
    certificate: CertificateRef
    invoice: LegacyInvoice

    def to_canonical(self) -> FacturaRequest:
        company = self.company
        invoice = self.invoice

        year, month, day = invoice.issueDate[:10].split("-")
        fecha_emision = f"{day}/{month}/{year}"

        detalles = []
        for item in invoice.items:
            descuento = item.discount or 0
            base = _round2(item.qty * item.unit_price - descuento)
            impuestos = []
            for tax in item.taxes or []:
                impuestos.append({
                    "codigo": tax.type_code,
                    "codigoPorcentaje": IVA_CODIGO_PORCENTAJE.get(int(tax.rate), "0"),
                    "tarifa": tax.rate,
                    "baseImponible": base,
                    "valor": _round2(base * tax.rate / 100),
                })
            detalles.append({
                "codigoPrincipal": item.code,
                "descripcion": item.description,
                "cantidad": item.qty,
                "precioUnitario": item.unit_price,
                "descuento": descuento,
                "precioTotalSinImpuesto": base,
                "impuestos": impuestos,
            })

        total_con_impuestos = []
        for rate, amount in invoice.totals.taxed_subtotals():
            total_con_impuestos.append({
                "codigo": "2",
                "codigoPorcentaje": IVA_CODIGO_PORCENTAJE.get(rate, "0"),
                "baseImponible": amount,
                "valor": _round2(amount * rate / 100),
                "tarifa": rate,
            })

        pagos = [
            {"formaPago": p.code, "total": p.amount, "plazo": "0", "unidadTiempo": "dias"}
            for p in invoice.totals.payments
        ]

        data = {
            "idempotency_key": self.idempotency_key,
            "env": self.env,
            "numeric_code": self.numeric_code,
            "version": DEFAULT_VERSION,
            "certificate": self.certificate.model_dump(exclude_none=True),
            "infoTributaria": {
                "ambiente": "2" if self.env == "prod" else "1",
                "tipoEmision": "1",
                "razonSocial": company.razonSocial,
                "nombreComercial": company.nombreComercial or company.razonSocial,
                "ruc": company.ruc,
                "codDoc": "01",
                "estab": company.estab,
                "ptoEmi": company.ptoEmi,
                "secuencial": company.secuencial,
                "dirMatriz": company.dirMatriz,
                "contribuyenteRimpe": company.contribuyenteRimpe,
            },
            "infoFactura": {
                "fechaEmision": fecha_emision,
                "dirEstablecimiento": company.dirEstablecimiento,
                "obligadoContabilidad": company.obligadoContabilidad or "SI",
                "tipoIdentificacionComprador": invoice.buyer.idType,
                "razonSocialComprador": invoice.buyer.name,
                "identificacionComprador": invoice.buyer.id,
                "direccionComprador": invoice.buyer.address,
                "totalSinImpuestos": invoice.totals.subtotal_0,
                "totalDescuento": invoice.totals.total_discount,
                "totalConImpuestos": total_con_impuestos,
                "propina": 0,
                "importeTotal": invoice.totals.total,
                "moneda": "DOLAR",
                "pagos": pagos,
            },
            "detalles": detalles,
        }
        if invoice.additional:
            data["infoAdicional"] = {
                "campos": [{"nombre": a.name, "valor": a.value} for a in invoice.additional]
            }
        return FacturaRequest.model_validate(data)

    def to_submission(self) -> "Submission":
        submission = self.to_canonical().to_submission()
        return replace(submission, variant="legacy")


# ---------------------------------------------------------------------------
# Formato raw_document (XML ya generado)
# ---------------------------------------------------------------------------

def _find_text(root, localname: str) -> Optional[str]:
    for elem in root.iter():
        if not isinstance(elem.tag, str):
            continue
        tag = elem.tag.split("}", 1)[1] if elem.tag.startswith("{") else elem.tag
        if tag == localname:
            return (elem.text or "").strip() or None
    return None


class RawDocumentRequest(BaseModel):
    """XML de comprobante ya generado; sólo se firma y se envía"""

    kind: Literal["raw_document"] = "raw_document"
    idempotency_key: Optional[str] = Field(default=None, min_length=6)
    env: Optional[Literal["test", "prod"]] = None
    xml: str = Field(min_length=1)
    certificate: CertificateRef

    @model_validator(mode="after")
    def _check_xml(self):
        try:
            root = etree.fromstring(self.xml.encode("utf-8"))
        except etree.XMLSyntaxError as exc:
            raise ValueError(f"xml no es un documento XML válido: {exc}")
        clave = _find_text(root, "claveAcceso")
        if not clave or not is_clave_acceso_format(clave):
            raise ValueError("xml debe contener <claveAcceso> de 49 dígitos")
        _check_env_ambiente(self.env, ambiente_digit(clave), "claveAcceso")
        return self

    def _root(self):
        return etree.fromstring(self.xml.encode("utf-8"))

    def access_key(self) -> str:
        return _find_text(self._root(), "claveAcceso")

    def key_fields(self) -> Dict[str, Optional[str]]:
        root = self._root()
        return {
            name: _find_text(root, name)
            for name in ("ruc", "estab", "ptoEmi", "secuencial", "fechaEmision")
        }

    def to_submission(self) -> "Submission":
        root = self._root()
        return Submission(
            variant="raw_document",
            payload=self.model_dump(mode="json", exclude_none=True, exclude={"kind"}),
            certificate=self.certificate,
            env=self.env,
            numeric_code=None,
            idempotency_key=self.idempotency_key,
            key_fields=self.key_fields(),
            ambiente=_find_text(root, "ambiente"),
            raw_xml=self.xml,
            access_key=self.access_key(),
        )


# ---------------------------------------------------------------------------
# Tipo interno único
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Submission:
    """Solicitud validada y normalizada que recibe el workflow"""
    variant: str
    payload: Dict[str, Any]
    certificate: CertificateRef
    env: Optional[str]
    numeric_code: Optional[str]
    idempotency_key: Optional[str]
    key_fields: Dict[str, Optional[str]]
    ambiente: Optional[str] = None
    document: Optional[Dict[str, Any]] = None
    raw_xml: Optional[str] = None
    access_key: Optional[str] = None


_VARIANTS = {
    "canonical": FacturaRequest,
    "legacy": LegacyEmitRequest,
    "raw_document": RawDocumentRequest,
}


def _issues(exc: PydanticValidationError, variant: str) -> List[Dict[str, Any]]:
    return [
        {
            "variant": variant,
            "loc": ".".join(str(p) for p in err.get("loc", ())),
            "msg": err.get("msg"),
        }
        for err in exc.errors()
    ]


def parse_request(data: Any) -> Submission:
    """
    Valida un payload entrante contra las variantes aceptadas

    Si trae ``kind`` se valida sólo contra esa variante; si no, se prueba
    canonical, luego legacy, luego raw_document.

    Args:
        data: dict recibido del cliente

    Returns:
        Submission

    Raises:
        ValidationError: si ninguna variante valida
    """
    if not isinstance(data, dict):
        raise ValidationError("Formato de datos inválido: se esperaba un objeto JSON")

    kind = data.get("kind")
    if kind is not None:
        model = _VARIANTS.get(kind) if isinstance(kind, str) else None
        if model is None:
            raise ValidationError(
                f"kind desconocido: {kind!r}. Válidos: {sorted(_VARIANTS)}",
                issues=[{"variant": None, "loc": "kind", "msg": "kind desconocido"}],
            )
        candidates = [(kind, model)]
    else:
        candidates = list(_VARIANTS.items())

    issues: List[Dict[str, Any]] = []
    for variant, model in candidates:
        try:
            parsed = model.model_validate(data)
        except PydanticValidationError as exc:
            issues.extend(_issues(exc, variant))
            continue
        logger.info(f"Payload validado como variante {variant}")
        return parsed.to_submission()

    raise ValidationError("Formato de datos inválido", issues=issues)


# ---------------------------------------------------------------------------
# Resultado canónico
# ---------------------------------------------------------------------------

def _b64(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return base64.b64encode(data).decode("ascii")


def _unb64(data: Optional[str]) -> Optional[bytes]:
    if data is None:
        return None
    return base64.b64decode(data)


@dataclass(frozen=True)
class CanonicalResult:
    """Resultado de emisión o consulta, inmutable"""
    status: str
    access_key: Optional[str] = None
    authorization_number: Optional[str] = None
    authorization_date: Optional[str] = None
    signed_document: Optional[bytes] = None
    authorized_document: Optional[bytes] = None
    messages: Tuple[str, ...] = field(default_factory=tuple)
    environment: Optional[str] = None
    payload_hash: Optional[str] = None

    def __post_init__(self):
        if self.status not in STATUSES:
            raise ValueError(f"status inválido: {self.status!r}")
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))

    @classmethod
    def error(cls, *messages: str, **kwargs) -> "CanonicalResult":
        return cls(status=STATUS_ERROR, messages=tuple(messages), **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Forma JSON de salida de la API (también usada para la caché)"""
        out: Dict[str, Any] = {"status": self.status, "messages": list(self.messages)}
        if self.access_key is not None:
            out["accessKey"] = self.access_key
        if self.authorization_number is not None or self.authorization_date is not None:
            out["authorization"] = {
                "number": self.authorization_number,
                "date": self.authorization_date,
            }
        if self.signed_document is not None:
            out["xml_signed_base64"] = _b64(self.signed_document)
        if self.authorized_document is not None:
            out["xml_authorized_base64"] = _b64(self.authorized_document)
        if self.environment is not None:
            out["environment"] = self.environment
        if self.payload_hash is not None:
            out["payload_hash"] = self.payload_hash
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalResult":
        authorization = data.get("authorization") or {}
        return cls(
            status=data["status"],
            access_key=data.get("accessKey"),
            authorization_number=authorization.get("number"),
            authorization_date=authorization.get("date"),
            signed_document=_unb64(data.get("xml_signed_base64")),
            authorized_document=_unb64(data.get("xml_authorized_base64")),
            messages=tuple(data.get("messages") or ()),
            environment=data.get("environment"),
            payload_hash=data.get("payload_hash"),
        )
