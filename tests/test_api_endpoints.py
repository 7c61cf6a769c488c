from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from webui.app import create_app

from _sri_fakes import FakeTransport, autorizacion_reply, canonical_payload, make_workflow

CLAVE = "1503202401179001234500110010020000001231234567811"


def _client(transport=None):
    transport = transport or FakeTransport(
        authorization={"test": lambda clave: autorizacion_reply("AUTORIZADO", clave)}
    )
    wf = make_workflow(transport)
    return create_app(workflow=wf).test_client(), transport


def test_emit_returns_canonical_json():
    client, transport = _client()

    response = client.post("/api/v1/invoices/emit", json=canonical_payload())
    body = response.get_json()

    assert response.status_code == 200
    assert body["status"] == "AUTHORIZED"
    assert len(body["accessKey"]) == 49
    assert body["authorization"]["number"] == body["accessKey"]
    assert body["xml_signed_base64"]
    assert body["environment"] == "test"
    assert len(transport.submit_calls) == 1


def test_emit_replay_hits_cache():
    client, transport = _client()

    first = client.post("/api/v1/invoices/emit", json=canonical_payload()).get_json()
    second = client.post("/api/v1/invoices/emit", json=canonical_payload()).get_json()

    assert first == second
    assert len(transport.submit_calls) == 1


def test_emit_rejects_non_json_body():
    client, _ = _client()
    response = client.post("/api/v1/invoices/emit", data="hola", content_type="text/plain")

    assert response.status_code == 400
    assert response.get_json()["status"] == "ERROR"


def test_emit_invalid_payload_returns_error_result():
    client, transport = _client()
    body = client.post("/api/v1/invoices/emit", json={"foo": "bar"}).get_json()

    assert body["status"] == "ERROR"
    assert body["messages"][0] == "Formato de datos inválido"
    assert transport.external_calls == 0


def test_status_with_env():
    client, transport = _client(FakeTransport(authorization={"test": autorizacion_reply("AUTORIZADO", CLAVE)}))

    body = client.get(f"/api/v1/invoices/{CLAVE}/status?env=test").get_json()

    assert body["status"] == "AUTHORIZED"
    assert body["environment"] == "test"
    assert transport.check_calls == [("test", CLAVE)]


def test_status_rejects_bad_access_key():
    client, transport = _client()
    response = client.get("/api/v1/invoices/123/status")

    assert response.status_code == 400
    assert response.get_json()["messages"] == ["Clave de acceso inválida."]
    assert transport.external_calls == 0


def test_status_rejects_bad_env():
    client, _ = _client()
    response = client.get(f"/api/v1/invoices/{CLAVE}/status?env=staging")
    assert response.status_code == 400


def test_config_summary():
    client, _ = _client()
    body = client.get("/api/v1/config").get_json()

    assert body["default_env"] == "test"
    assert set(body["test"]) == {"recepcion", "autorizacion"}
