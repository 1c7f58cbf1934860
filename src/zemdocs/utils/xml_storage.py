"""Raw XML storage on the local filesystem.

Keys are POSIX-style paths relative to the storage root. Two layouts exist
and both must stay readable:

    XML/NFS/<yyyy>/<mmyyyy>/<numero>.xml          (legacy)
    XML/NFS/<yyyy>/<mmyyyy>/<cnpj>/<numero>.xml   (issuer CNPJ known)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath

from filelock import FileLock

from zemdocs.config import OBJECT_KEY_PREFIX
from zemdocs.services.exceptions import XmlNotFoundError

logger = logging.getLogger(__name__)


def _period(competencia: str) -> tuple[str, str]:
    if len(competencia) < 6 or not competencia[:6].isdigit():
        raise ValueError(f"Competência inválida: '{competencia}'. Use YYYYMM.")
    return competencia[:4], competencia[4:6]


def object_key(numero_nfse: str, competencia: str) -> str:
    """Legacy key: ``XML/NFS/2024/082024/240000093.xml``."""
    year, month = _period(competencia)
    return f"{OBJECT_KEY_PREFIX}/{year}/{month}{year}/{numero_nfse}.xml"


def object_key_with_cnpj(numero_nfse: str, competencia: str, cnpj: str) -> str:
    """Issuer-qualified key: ``XML/NFS/2024/082024/32800353000162/240000093.xml``."""
    year, month = _period(competencia)
    return f"{OBJECT_KEY_PREFIX}/{year}/{month}{year}/{cnpj}/{numero_nfse}.xml"


class XmlStorage:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        rel = PurePosixPath(key)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"Chave inválida: '{key}'")
        return self.root.joinpath(*rel.parts)

    @contextmanager
    def _locked(self, path: Path) -> Iterator[None]:
        """Hold an exclusive file lock while replacing *path*."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(path.with_name(path.name + ".lock")):
            yield

    def put(self, key: str, data: bytes) -> None:
        """Write *data* under *key* (atomic replace)."""
        path = self._path(key)
        with self._locked(path):
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, path)
        logger.info("XML stored at %s (%d bytes)", key, len(data))

    def get(self, key: str) -> bytes:
        """Read the blob under *key*. Raises XmlNotFoundError if absent."""
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise XmlNotFoundError(f"XML não encontrado: {key}") from None

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info("XML removed at %s", key)
        return True

    def list(self, prefix: str = "") -> list[str]:
        """Sorted keys of stored XML files starting with *prefix*."""
        if not self.root.exists():
            return []
        keys = (
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*.xml")
            if p.is_file()
        )
        return sorted(k for k in keys if k.startswith(prefix))
