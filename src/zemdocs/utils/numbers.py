from __future__ import annotations


def parse_locale_float(value: str) -> float:
    """Parse a Brazilian-locale decimal ("1234,56") into a float.

    An empty string is zero. Raises ValueError for non-numeric text,
    including Python digit separators ("1_000").
    """
    value = value.strip()
    if not value:
        return 0.0
    if "_" in value:
        raise ValueError(f"valor numérico inválido: {value!r}")
    return float(value.replace(",", "."))


def parse_int(value: str) -> int:
    """Parse an integer field encoded as text. Raises ValueError when invalid."""
    value = value.strip()
    if "_" in value:
        raise ValueError(f"valor inteiro inválido: {value!r}")
    return int(value)
