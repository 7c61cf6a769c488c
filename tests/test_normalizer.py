from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sri_minisender.models import STATUS_AUTHORIZED, STATUS_NOT_AUTHORIZED, STATUS_PROCESSING
from sri_minisender.normalizer import (
    MSG_NO_AUTORIZADO_SIN_DETALLE,
    MSG_PENDIENTE,
    estado_recepcion,
    extract_mensajes,
    is_recibida,
    parse_autorizacion,
    rejection_messages,
    to_canonical_result,
    to_status,
    unwrap_cdata,
)

from _sri_fakes import autorizacion_reply, devuelta_reply, pendiente_reply

CLAVE = "1503202401179001234500110010020000001231234567811"


def test_cdata_is_unwrapped_exactly():
    assert unwrap_cdata("<![CDATA[<factura>x</factura>]]>") == "<factura>x</factura>"
    assert unwrap_cdata("  <factura/>  ") == "<factura/>"
    assert unwrap_cdata(None) == ""


def test_authorized_reply_exposes_number_date_and_document():
    parsed = parse_autorizacion(autorizacion_reply("AUTORIZADO", CLAVE))

    assert parsed.autorizado
    assert parsed.numero == CLAVE
    assert parsed.fecha == "2024-03-15T10:00:00-05:00"
    assert parsed.comprobante == '<factura id="comprobante"/>'


def test_wrapped_root_and_single_object_autorizacion():
    reply = {
        "RespuestaAutorizacionComprobante": {
            "numeroComprobantes": "1",
            "autorizaciones": {"autorizacion": {"estado": " autorizado ", "numeroAutorizacion": CLAVE}},
        }
    }
    assert parse_autorizacion(reply).estado == "AUTORIZADO"


def test_no_authorizations_is_pending():
    parsed = parse_autorizacion(pendiente_reply(CLAVE))
    assert parsed.estado == "PENDIENTE"
    assert to_status(parsed.estado) == STATUS_PROCESSING
    assert to_canonical_result(parsed, CLAVE).messages == (MSG_PENDIENTE,)


def test_not_authorized_messages_are_joined():
    reply = autorizacion_reply(
        "NO AUTORIZADO",
        CLAVE,
        mensajes=[
            {"identificador": "43", "mensaje": "CLAVE ACCESO REGISTRADA", "informacionAdicional": ""},
            {"identificador": "65", "mensaje": "FECHA EMISION EXTEMPORANEA", "informacionAdicional": "max 90 dias"},
        ],
    )
    parsed = parse_autorizacion(reply)

    assert parsed.error_msg == "43: CLAVE ACCESO REGISTRADA | 65: FECHA EMISION EXTEMPORANEA: max 90 dias"
    result = to_canonical_result(parsed, CLAVE, environment="test")
    assert result.status == STATUS_NOT_AUTHORIZED
    assert result.environment == "test"


def test_not_authorized_without_messages():
    parsed = parse_autorizacion(autorizacion_reply("NO AUTORIZADO", CLAVE))
    assert parsed.error_msg == MSG_NO_AUTORIZADO_SIN_DETALLE


def test_unknown_estado_maps_to_processing():
    parsed = parse_autorizacion(autorizacion_reply("EN PROCESO", CLAVE))
    assert parsed.estado == "DESCONOCIDO"
    assert parsed.estado_original == "EN PROCESO"
    assert to_canonical_result(parsed, CLAVE).status == STATUS_PROCESSING


def test_authorized_result_has_no_messages():
    result = to_canonical_result(parse_autorizacion(autorizacion_reply("AUTORIZADO", CLAVE)), CLAVE)
    assert result.status == STATUS_AUTHORIZED
    assert result.messages == ()
    assert result.authorized_document == b'<factura id="comprobante"/>'


def test_recepcion_estado_candidate_paths():
    assert is_recibida({"estado": "RECIBIDA"})
    assert is_recibida({"respuestaRecepcionComprobante": {"estado": "RECIBIDA"}})
    assert is_recibida({"RespuestaRecepcionComprobante": {"estado": "RECIBIDA"}})
    nested = {"RespuestaRecepcionComprobante": {"comprobantes": {"comprobante": [{"estado": "recibida"}]}}}
    assert estado_recepcion(nested) == "RECIBIDA"
    assert not is_recibida({})
    assert estado_recepcion({}) is None


def test_rejection_messages_start_with_estado():
    messages = rejection_messages(devuelta_reply())
    assert messages == ["Estado recepción: DEVUELTA", "45: CLAVE ACCESO INVALIDA"]


def test_rejection_without_messages_falls_back_to_json():
    messages = rejection_messages({"estado": "DEVUELTA"})
    assert messages[0] == "Estado recepción: DEVUELTA"
    assert '"estado": "DEVUELTA"' in messages[1]


def test_extract_mensajes_single_object():
    reply = {"comprobantes": {"comprobante": {"mensajes": {"mensaje": {"identificador": "35", "mensaje": "ARCHIVO NO CUMPLE ESTRUCTURA XML"}}}}}
    assert extract_mensajes(reply) == ["35: ARCHIVO NO CUMPLE ESTRUCTURA XML"]
