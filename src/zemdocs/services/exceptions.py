from __future__ import annotations


class EncodingError(ValueError):
    """XML bytes could not be transcoded to text."""


class ArchiveError(ValueError):
    """Compressed XML payload could not be decoded (Base64, ZIP or entry read)."""


class XmlParseError(ValueError):
    """XML document is structurally invalid for the NFS-e schema."""


class TaxApiError(RuntimeError):
    """The municipal tax API returned an error or an undecodable response."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MunicipalityNotImplementedError(LookupError):
    """No client is registered for the requested municipality."""


class DuplicateDocumentError(Exception):
    """The document store already holds a document with this number."""

    def __init__(self, numero: str) -> None:
        super().__init__(f"Documento {numero} já existe")
        self.numero = numero


class XmlNotFoundError(FileNotFoundError):
    """No raw XML blob is stored under any known key."""


class SyncCancelled(Exception):
    """A sync run observed cancellation."""


class SyncError(RuntimeError):
    """A sync run could not start (first page fetch failed)."""
