from __future__ import annotations

import base64
import binascii
import io
import logging
import zipfile
import zlib

from zemdocs.config import MAX_XML_SIZE
from zemdocs.services.exceptions import ArchiveError

logger = logging.getLogger(__name__)


def decompress_xml(compressed_b64: str, max_size: int = MAX_XML_SIZE) -> bytes:
    """Decode a Base64+ZIP ``XmlCompactado`` payload and return the XML bytes.

    Archives are expected to hold exactly one XML file. Only the first entry
    is read; any further entries are ignored. Entries larger than *max_size*
    are rejected.
    """
    try:
        data = base64.b64decode(compressed_b64.replace("\r", "").replace("\n", ""), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ArchiveError(f"Erro ao decodificar base64: {exc}") from exc

    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Erro ao abrir ZIP: {exc}") from exc

    with zf:
        entries = zf.infolist()
        if not entries:
            raise ArchiveError("Arquivo ZIP vazio")
        if len(entries) > 1:
            logger.debug("ZIP has %d entries, reading only %s", len(entries), entries[0].filename)

        first = entries[0]
        if first.file_size > max_size:
            raise ArchiveError(
                f"XML excede o tamanho máximo ({first.file_size} > {max_size} bytes)"
            )
        try:
            with zf.open(first) as fh:
                content = fh.read(max_size + 1)
        except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError, OSError) as exc:
            raise ArchiveError(f"Erro ao ler XML do ZIP: {exc}") from exc

    if len(content) > max_size:
        raise ArchiveError(f"XML excede o tamanho máximo ({max_size} bytes)")
    return content
