# app/sri_client/clave_acceso.py
# Clave de acceso SRI (49 dígitos) y su dígito verificador módulo 11

from __future__ import annotations

import re

CLAVE_ACCESO_LEN = 49
AMBIENTE_POS = 23  # fecha(8) + codDoc(2) + ruc(13)

_CLAVE_RE = re.compile(r"^\d{49}$")


def calc_dv_mod11(base: str) -> int:
    """
    Calcula el dígito verificador módulo 11 (pesos 2..7 desde la derecha).
    base: string numérico SIN el DV final.
    Retorna: int 0..9
    """
    s = (base or "").strip()
    if not s.isdigit():
        raise ValueError(f"base debe ser numérica, recibido: {base!r}")

    total = 0
    k = 2
    for ch in reversed(s):
        total += int(ch) * k
        k = 2 if k == 7 else k + 1

    dv = 11 - (total % 11)
    if dv == 11:
        return 0
    if dv == 10:
        return 1
    return dv


def build_clave_acceso(
    *,
    fecha_emision: str,
    cod_doc: str,
    ruc: str,
    ambiente: str,
    estab: str,
    pto_emi: str,
    secuencial: str,
    codigo_numerico: str,
    tipo_emision: str = "1",
) -> str:
    """
    Arma la clave de acceso de 49 dígitos.

    fecha_emision viene en formato dd/mm/aaaa (como en infoFactura).
    """
    parts = (fecha_emision or "").strip().split("/")
    if len(parts) != 3:
        raise ValueError(f"fechaEmision debe ser dd/mm/aaaa, recibido: {fecha_emision!r}")
    dd, mm, yyyy = parts

    base = (
        f"{dd.zfill(2)}{mm.zfill(2)}{yyyy}"
        f"{cod_doc}"
        f"{ruc}"
        f"{ambiente}"
        f"{estab}{pto_emi}"
        f"{secuencial}"
        f"{codigo_numerico}"
        f"{tipo_emision}"
    )
    if len(base) != CLAVE_ACCESO_LEN - 1 or not base.isdigit():
        raise ValueError(f"Base de clave de acceso inválida ({len(base)} caracteres): {base!r}")
    return base + str(calc_dv_mod11(base))


def is_clave_acceso_format(clave: str) -> bool:
    return bool(_CLAVE_RE.match((clave or "").strip()))


def is_clave_acceso_valid(clave: str) -> bool:
    """
    Valida formato (49 dígitos) y DV.
    """
    s = (clave or "").strip()
    if not is_clave_acceso_format(s):
        return False
    return int(s[48]) == calc_dv_mod11(s[:48])


def ambiente_digit(clave: str) -> str:
    s = (clave or "").strip()
    if len(s) <= AMBIENTE_POS:
        return ""
    return s[AMBIENTE_POS]
