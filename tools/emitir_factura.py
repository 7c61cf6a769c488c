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
    ap = argparse.ArgumentParser(description="Emite una factura al SRI (firma + Recepción + Autorización)")
    ap.add_argument("--payload", required=True, help="JSON de la factura (canonical, legacy o raw_document)")
    ap.add_argument("--out", default=None, help="Guardar el resultado JSON en este archivo")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    payload_path = Path(args.payload).expanduser()
    try:
        payload = json.loads(payload_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        print(f"ERROR leyendo payload {payload_path}: {exc}", file=sys.stderr)
        return 2

    wf = workflow or build_workflow(start_sweeper=False)
    result = wf.emit(payload)

    out = json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
    if args.out:
        Path(args.out).expanduser().write_text(out + "\n", encoding="utf-8")
    print(out)
    return 1 if result.status == STATUS_ERROR else 0


if __name__ == "__main__":
    raise SystemExit(main())
