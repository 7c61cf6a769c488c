#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Asegurar import "app.*" aunque ejecutes desde tools/
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from sri_minisender.models import STATUS_ERROR
from sri_minisender.workflow import build_workflow


def main(argv=None, workflow=None) -> int:
    ap = argparse.ArgumentParser(description="Consulta autorización SRI por clave de acceso (autorizacionComprobante)")
    ap.add_argument("--clave", required=True, help="Clave de acceso (49 dígitos)")
    ap.add_argument("--env", choices=["test", "prod"], default=None,
                    help="Ambiente; sin valor se consultan ambos")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    wf = workflow or build_workflow(start_sweeper=False)
    result = wf.status(args.clave.strip(), args.env)

    print("============================================================")
    print("=== RESULT autorizacionComprobante ===")
    print(f"clave: {args.clave.strip()}")
    print(f"env: {result.environment or args.env or '-'}")
    print(f"status: {result.status}")
    if result.authorization_number:
        print(f"numeroAutorizacion: {result.authorization_number}")
    if result.authorization_date:
        print(f"fechaAutorizacion: {result.authorization_date}")
    for msg in result.messages:
        print(f"mensaje: {msg}")
    print("============================================================")
    print(json.dumps(result.to_dict(), ensure_ascii=False))
    return 1 if result.status == STATUS_ERROR else 0


if __name__ == "__main__":
    raise SystemExit(main())
