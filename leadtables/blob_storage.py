from __future__ import annotations

from pathlib import Path

from leadtables.core.config import get_settings


class BlobNotFoundError(FileNotFoundError):
    pass


class LocalBlobStorage:
    """Filesystem-backed blob storage; object paths are resolved under ``<root>/<bucket>``."""

    def __init__(self, root: str | Path, bucket: str) -> None:
        self.root = Path(root)
        self.bucket = bucket

    def _base_dir(self) -> Path:
        return (self.root / self.bucket).resolve()

    def _resolve(self, path: str, within: str | None = None) -> Path:
        bucket_dir = self._base_dir()
        allowed = (bucket_dir / within.strip("/")).resolve() if within is not None else bucket_dir
        if allowed != bucket_dir and bucket_dir not in allowed.parents:
            raise ValueError(f"prefix escapes storage bucket: {within}")
        candidate = (bucket_dir / path.lstrip("/")).resolve()
        if candidate != allowed and allowed not in candidate.parents:
            raise ValueError(f"path escapes {within or self.bucket}: {path}")
        return candidate

    def upload(self, path: str, content: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    def download(self, path: str, *, within: str | None = None) -> bytes:
        """Read a blob; with ``within`` the resolved path must also sit under that prefix."""
        target = self._resolve(path, within)
        if not target.is_file():
            raise BlobNotFoundError(f"blob not found: {self.bucket}/{path}")
        return target.read_bytes()


def get_blob_storage() -> LocalBlobStorage:
    settings = get_settings()
    return LocalBlobStorage(settings.blob_storage_dir, settings.import_storage_bucket)
