from typing import BinaryIO, Optional


class StorageProvider:
    """Object storage addressed by bucket + path; keys are "{bucket}/{path}"."""

    def copy_in(self, src_stream: bytes | BinaryIO, key: str, content_type: Optional[str] = None, cache_control: Optional[str] = None) -> None:
        raise NotImplementedError

    def read(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError


def object_key(bucket: str, path: str) -> str:
    clean = path.lstrip("/").replace("\\", "/")
    if ".." in clean.split("/"):
        raise ValueError("Invalid object path")
    return f"{bucket}/{clean}"
