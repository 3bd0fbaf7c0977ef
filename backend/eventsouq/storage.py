from pathlib import Path
from typing import Optional

from .config import settings


class StorageError(Exception):
    pass


class ObjectExistsError(StorageError):
    pass


class ObjectStorage:
    """Filesystem-backed bucket store. Object paths are relative to the bucket."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.storage_root)

    def _full_path(self, bucket: str, path: str) -> Path:
        base = (self.root / bucket).resolve()
        full = (base / path).resolve()
        if base != full and base not in full.parents:
            raise StorageError(f"Invalid object path: {path}")
        return full

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        upsert: bool = False,
    ) -> str:
        target = self._full_path(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            mode = "wb" if upsert else "xb"
            with open(target, mode) as fh:
                fh.write(data)
        except FileExistsError as exc:
            raise ObjectExistsError(f"Object already exists: {bucket}/{path}") from exc
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        return path


def get_storage() -> ObjectStorage:
    return ObjectStorage()
