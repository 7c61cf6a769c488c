from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import redis

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.sri_client.config import SriConfig
from app.sri_client.xml_generator import FacturaXmlGenerator
from sri_minisender.cert_resolver import ResolvedCertificate
from sri_minisender.environment import EnvironmentResolver
from sri_minisender.idempotency import IdempotencyCache
from sri_minisender.workflow import SubmissionWorkflow

P12_B64 = "UDEyREFUQQ=="  # b"P12DATA"

CANONICAL_PAYLOAD: Dict[str, Any] = {
    "idempotency_key": "factura-001",
    "certificate": {"p12_base64": P12_B64, "password": "secreto"},
    "infoTributaria": {
        "ambiente": "1",
        "razonSocial": "ACME S.A.",
        "ruc": "1790012345001",
        "estab": "001",
        "ptoEmi": "002",
        "secuencial": "000000123",
        "dirMatriz": "Av. Amazonas 123",
    },
    "infoFactura": {
        "fechaEmision": "15/03/2024",
        "dirEstablecimiento": "Av. Amazonas 123",
        "tipoIdentificacionComprador": "05",
        "razonSocialComprador": "Juan Pérez",
        "identificacionComprador": "1712345678",
        "totalSinImpuestos": 10.0,
        "totalDescuento": 0,
        "totalConImpuestos": [
            {"codigo": "2", "codigoPorcentaje": "4", "baseImponible": 10.0, "valor": 1.5},
        ],
        "importeTotal": 11.5,
        "pagos": [{"formaPago": "01", "total": 11.5}],
    },
    "detalles": [
        {
            "codigoPrincipal": "P001",
            "descripcion": "Servicio de soporte",
            "cantidad": 1,
            "precioUnitario": 10.0,
            "precioTotalSinImpuesto": 10.0,
            "impuestos": [
                {"codigo": "2", "codigoPorcentaje": "4", "tarifa": 15, "baseImponible": 10.0, "valor": 1.5},
            ],
        }
    ],
}

LEGACY_PAYLOAD: Dict[str, Any] = {
    "idempotency_key": "legacy-0001",
    "env": "test",
    "company": {
        "ruc": "1790012345001",
        "estab": "001",
        "ptoEmi": "002",
        "secuencial": "000000124",
        "razonSocial": "ACME S.A.",
        "dirMatriz": "Av. Amazonas 123",
        "dirEstablecimiento": "Av. Amazonas 123",
    },
    "certificate": {"p12_base64": P12_B64, "password": "secreto"},
    "invoice": {
        "issueDate": "2024-03-15",
        "buyer": {"idType": "05", "id": "1712345678", "name": "Juan Pérez"},
        "totals": {
            "subtotal_0": 0,
            "subtotal_15": 20.0,
            "total_discount": 0,
            "total": 23.0,
            "payments": [{"code": "01", "amount": 23.0}],
        },
        "items": [
            {
                "code": "P001",
                "description": "Servicio",
                "qty": 2,
                "unit_price": 10.0,
                "taxes": [{"type_code": "2", "rate": 15}],
            }
        ],
        "additional": [{"name": "email", "value": "juan@example.com"}],
    },
}


def canonical_payload(**overrides) -> Dict[str, Any]:
    data = copy.deepcopy(CANONICAL_PAYLOAD)
    data.update(overrides)
    return data


def legacy_payload(**overrides) -> Dict[str, Any]:
    data = copy.deepcopy(LEGACY_PAYLOAD)
    data.update(overrides)
    return data


def recibida_reply() -> Dict[str, Any]:
    return {"estado": "RECIBIDA", "comprobantes": None}


def devuelta_reply() -> Dict[str, Any]:
    return {
        "estado": "DEVUELTA",
        "comprobantes": {
            "comprobante": [
                {
                    "claveAcceso": "0" * 49,
                    "mensajes": {
                        "mensaje": [
                            {
                                "identificador": "45",
                                "mensaje": "CLAVE ACCESO INVALIDA",
                                "informacionAdicional": None,
                                "tipo": "ERROR",
                            }
                        ]
                    },
                }
            ]
        },
    }


def autorizacion_reply(estado: str, clave: str = "", mensajes: Optional[list] = None) -> Dict[str, Any]:
    aut: Dict[str, Any] = {
        "estado": estado,
        "numeroAutorizacion": clave,
        "fechaAutorizacion": "2024-03-15T10:00:00-05:00",
        "ambiente": "PRUEBAS",
    }
    if estado == "AUTORIZADO":
        aut["comprobante"] = '<![CDATA[<factura id="comprobante"/>]]>'
    if mensajes is not None:
        aut["mensajes"] = {"mensaje": mensajes}
    return {
        "claveAccesoConsultada": clave,
        "numeroComprobantes": "1",
        "autorizaciones": {"autorizacion": [aut]},
    }


def pendiente_reply(clave: str = "") -> Dict[str, Any]:
    return {"claveAccesoConsultada": clave, "numeroComprobantes": "0", "autorizaciones": None}


class FakeRedis:
    """Subconjunto de redis.Redis: ping/get/set(ex=)"""

    def __init__(self, *, fail_ping: bool = False, fail_ops: bool = False):
        self.fail_ping = fail_ping
        self.fail_ops = fail_ops
        self.store: Dict[str, bytes] = {}
        self.expiry: Dict[str, int] = {}

    def ping(self):
        if self.fail_ping:
            raise redis.ConnectionError("Connection refused")
        return True

    def get(self, key):
        if self.fail_ops:
            raise redis.ConnectionError("lost connection")
        return self.store.get(key)

    def set(self, key, value, ex=None):
        if self.fail_ops:
            raise redis.ConnectionError("lost connection")
        self.store[key] = value.encode("utf-8") if isinstance(value, str) else value
        self.expiry[key] = ex
        return True


class FakeTransport:
    """
    Transporte en memoria.

    authorization: dict env -> respuesta (o excepción a lanzar)
    """

    def __init__(self, submit_reply=None, authorization=None, submit_error: Optional[Exception] = None):
        self.submit_reply = submit_reply if submit_reply is not None else recibida_reply()
        self.authorization = authorization or {}
        self.submit_error = submit_error
        self.submit_calls: List[tuple] = []
        self.check_calls: List[tuple] = []

    def _env_for(self, endpoint: str) -> str:
        return "test" if "celcer" in endpoint else "prod"

    def submit(self, endpoint, signed_document):
        self.submit_calls.append((endpoint, signed_document))
        if self.submit_error is not None:
            raise self.submit_error
        return self.submit_reply

    def check_authorization(self, endpoint, access_key):
        env = self._env_for(endpoint)
        self.check_calls.append((env, access_key))
        reply = self.authorization.get(env)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(access_key)
        return reply if reply is not None else pendiente_reply(access_key)

    @property
    def external_calls(self) -> int:
        return len(self.submit_calls) + len(self.check_calls)


class CountingGenerator(FacturaXmlGenerator):
    def __init__(self):
        self.calls = 0

    def generate(self, document, numeric_code):
        self.calls += 1
        return super().generate(document, numeric_code)


class FakeSigner:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[tuple] = []

    def sign(self, xml, p12_base64, password):
        self.calls.append((xml, p12_base64, password))
        if self.error is not None:
            raise self.error
        return xml + b"<!-- firmado -->"


class FakeCertResolver:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = 0

    def resolve(self, ref):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return ResolvedCertificate(ref.p12_base64 or P12_B64, ref.password, "inline")


def make_config(**attrs) -> SriConfig:
    config = SriConfig()
    config.default_env = "test"
    config.redis_url = None
    config.idempotency_strict = False
    config.status_probe_both = True
    for name, value in attrs.items():
        setattr(config, name, value)
    return config


def make_workflow(
    transport: Optional[FakeTransport] = None,
    *,
    cache: Optional[IdempotencyCache] = None,
    signer: Optional[FakeSigner] = None,
    cert_resolver: Optional[FakeCertResolver] = None,
    **config_attrs,
) -> SubmissionWorkflow:
    config = make_config(**config_attrs)
    transport = transport or FakeTransport()
    return SubmissionWorkflow(
        cache=cache or IdempotencyCache(start_sweeper=False),
        transport=transport,
        generator=CountingGenerator(),
        signer=signer or FakeSigner(),
        resolver=EnvironmentResolver(config, transport),
        cert_resolver=cert_resolver or FakeCertResolver(),
        config=config,
    )
