import logging
import os
import sys
from pathlib import Path
from typing import Optional

from flask import Flask, current_app, jsonify, request

# Asegurar imports desde repo root (evitar conflicto con webui/app.py)
SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) in sys.path:
    sys.path.remove(str(SCRIPT_DIR))
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from app.sri_client.clave_acceso import is_clave_acceso_format
from app.sri_client.config import get_sri_config
from sri_minisender.models import STATUS_ERROR
from sri_minisender.workflow import SubmissionWorkflow, build_workflow

APP_TITLE = "SRI minisender"
WORKFLOW_EXT = "sri_workflow"


def _workflow() -> SubmissionWorkflow:
    # Se construye en la primera solicitud: Redis y WSDL no se tocan al importar
    wf = current_app.extensions.get(WORKFLOW_EXT)
    if wf is None:
        wf = build_workflow(current_app.config["SRI_CONFIG"])
        current_app.extensions[WORKFLOW_EXT] = wf
    return wf


def create_app(workflow: Optional[SubmissionWorkflow] = None, config=None) -> Flask:
    """
    Crea la app Flask

    Args:
        workflow: SubmissionWorkflow ya armado (tests); None => build_workflow()
        config: SriConfig; None => desde el entorno
    """
    flask_app = Flask(__name__)
    flask_app.config["SRI_CONFIG"] = config or (workflow.config if workflow is not None else get_sri_config())
    if workflow is not None:
        flask_app.extensions[WORKFLOW_EXT] = workflow

    @flask_app.route("/health")
    @flask_app.route("/healthz")
    def health():
        cache = _workflow().cache
        return jsonify({"ok": True, "app": APP_TITLE, "cache": cache.health()})

    @flask_app.route("/api/v1/config")
    def config_summary():
        return jsonify(current_app.config["SRI_CONFIG"].describe())

    @flask_app.route("/api/v1/invoices/emit", methods=["POST"])
    def emit_invoice():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"status": STATUS_ERROR, "messages": ["Se esperaba un cuerpo JSON (objeto)"]}), 400

        result = _workflow().emit(payload)
        return jsonify(result.to_dict())

    @flask_app.route("/api/v1/invoices/<access_key>/status")
    def invoice_status(access_key):
        env = (request.args.get("env") or "").strip().lower() or None
        if not is_clave_acceso_format(access_key):
            return jsonify({"status": STATUS_ERROR, "messages": ["Clave de acceso inválida."]}), 400
        if env is not None and env not in ("test", "prod"):
            return jsonify({"status": STATUS_ERROR, "messages": [f"Ambiente inválido: {env}"]}), 400

        result = _workflow().status(access_key, env)
        return jsonify(result.to_dict())

    return flask_app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("SRI_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        app.run(host="127.0.0.1", port=int(os.environ.get("PORT", "5055")), debug=False, use_reloader=False)
    except Exception as exc:
        print(f"APP_RUN_ERROR: {exc!r}", file=sys.stderr)
        raise
