"""
Local filesystem storage provider for development and tests.
"""
from typing import Optional, BinaryIO
from pathlib import Path
from urllib.parse import quote

from ..config import settings
from .provider import StorageProvider


class LocalStorageProvider(StorageProvider):
    """Saves objects under base_dir/<bucket>/<path>."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / clean_key

    def copy_in(self, src_stream: bytes | BinaryIO, key: str, content_type: Optional[str] = None, cache_control: Optional[str] = None) -> None:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            if hasattr(src_stream, "read"):
                f.write(src_stream.read())
            else:
                f.write(src_stream)

    def read(self, key: str) -> Optional[bytes]:
        path = self._get_path(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        if not self._get_path(key).exists():
            return None
        return f"{settings.public_base_url}/storage/v1/object/public/{quote(key.lstrip('/'))}"

    def exists(self, key: str) -> bool:
        return self._get_path(key).is_file()

    def delete(self, key: str) -> bool:
        path = self._get_path(key)
        if not path.is_file():
            return False
        path.unlink()
        return True
