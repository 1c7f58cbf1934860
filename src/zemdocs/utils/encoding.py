"""Correct ISO-8859-1 XML payloads before parsing.

The municipal API ships XML declared as ISO-8859-1 inside the archives. We
decode those bytes one byte per code point and rewrite the declaration so
downstream parsers see consistent UTF-8 text. This is a heuristic keyed on
the declaration string, not a charset sniffer.
"""

from __future__ import annotations

import re

from zemdocs.services.exceptions import EncodingError

_UTF8_DECL = re.compile(rb"""encoding\s*=\s*["']UTF-8["']""", re.IGNORECASE)
_LATIN1_DECL = re.compile(r"""encoding\s*=\s*(["'])ISO-8859-1\1""", re.IGNORECASE)


def declares_utf8(raw: bytes) -> bool:
    """Return True if the XML declaration already names UTF-8."""
    return _UTF8_DECL.search(raw[:200]) is not None


def normalize_encoding(raw: bytes) -> str:
    """Return *raw* as text with an ISO-8859-1 declaration rewritten to UTF-8.

    Bytes already declaring UTF-8 are decoded unchanged. Anything else is
    treated as ISO-8859-1. Raises EncodingError when decoding fails.
    """
    if declares_utf8(raw):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncodingError(f"Erro ao converter encoding: {exc}") from exc
    try:
        text = raw.decode("iso-8859-1")
    except UnicodeDecodeError as exc:
        raise EncodingError(f"Erro ao converter encoding: {exc}") from exc
    return rewrite_declaration(text)


def rewrite_declaration(text: str) -> str:
    """Rewrite an ISO-8859-1 encoding declaration in decoded *text* to UTF-8."""
    return _LATIN1_DECL.sub(r"encoding=\1UTF-8\1", text)
