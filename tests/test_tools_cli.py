from pathlib import Path
import json
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tools import consulta_autorizacion, emitir_factura

from _sri_fakes import FakeTransport, autorizacion_reply, canonical_payload, make_workflow

CLAVE = "1503202401179001234500110010020000001231234567811"


def test_emitir_factura_prints_result_and_writes_out(tmp_path, capsys):
    payload_path = tmp_path / "factura.json"
    payload_path.write_text(json.dumps(canonical_payload()), encoding="utf-8")
    out_path = tmp_path / "resultado.json"
    wf = make_workflow(FakeTransport(authorization={"test": lambda clave: autorizacion_reply("AUTORIZADO", clave)}))

    rc = emitir_factura.main(["--payload", str(payload_path), "--out", str(out_path)], workflow=wf)

    assert rc == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["status"] == "AUTHORIZED"
    assert json.loads(out_path.read_text(encoding="utf-8")) == printed


def test_emitir_factura_bad_json_returns_2(tmp_path):
    payload_path = tmp_path / "roto.json"
    payload_path.write_text("{no json", encoding="utf-8")

    assert emitir_factura.main(["--payload", str(payload_path)], workflow=make_workflow()) == 2


def test_consulta_autorizacion_summary(capsys):
    wf = make_workflow(FakeTransport(authorization={"prod": autorizacion_reply("AUTORIZADO", CLAVE)}))

    rc = consulta_autorizacion.main(["--clave", CLAVE, "--env", "prod"], workflow=wf)

    out = capsys.readouterr().out
    assert rc == 0
    assert "status: AUTHORIZED" in out
    assert f"numeroAutorizacion: {CLAVE}" in out


def test_consulta_autorizacion_invalid_key_exit_code(capsys):
    rc = consulta_autorizacion.main(["--clave", "123"], workflow=make_workflow())

    assert rc == 1
    assert "status: ERROR" in capsys.readouterr().out
