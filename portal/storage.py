"""
Object storage for campaign uploads.

Keys are tenant and campaign scoped. Downloads go through short-lived
HMAC-signed URLs so file access never needs a session.
"""
import hashlib
import hmac
import os
import re
import shutil
import time
import uuid
from pathlib import Path
from typing import BinaryIO, Dict, Optional
from urllib.parse import quote, urlencode

from .config import Settings, get_settings
from .errors import NotFound, ValidationFailed

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(filename: str) -> str:
    base = _UNSAFE_CHARS.sub("_", os.path.basename(filename or ""))
    return base or "file"


def build_object_key(tenant_id: int, campaign_id: int, asset_type: str, filename: str, prefix: str = "") -> str:
    """``[prefix/]tenants/{t}/campaigns/{c}/{asset_type}/{name}-{uuid}{ext}``"""
    safe_name = sanitize_filename(filename)
    name, ext = os.path.splitext(safe_name)
    prefix = prefix.rstrip("/") + "/" if prefix else ""
    return f"{prefix}tenants/{tenant_id}/campaigns/{campaign_id}/{asset_type}/{name}-{uuid.uuid4()}{ext}"


class LocalObjectStorage:
    """Filesystem-backed storage with the same contract as a bucket adapter."""

    def __init__(self, root: str, bucket: str, secret_key: str, download_path: str = "/api/files"):
        self.root = Path(root)
        self.bucket = bucket
        self.secret_key = secret_key
        self.download_path = download_path.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LocalObjectStorage":
        settings = settings or get_settings()
        return cls(settings.storage_root, settings.storage_bucket, settings.secret_key)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValidationFailed("Invalid storage key", {"key": key})
        return path

    def upload(self, key: str, fileobj: BinaryIO, content_type: Optional[str] = None) -> Dict[str, str]:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as out:
            shutil.copyfileobj(fileobj, out)
        return {"key": key, "bucket": self.bucket}

    def delete(self, key: str):
        path = self._path(key)
        if path.exists():
            path.unlink()

    def open_path(self, key: str) -> Path:
        path = self._path(key)
        if not path.is_file():
            raise NotFound("File not found")
        return path

    # ============================================================
    # SIGNED DOWNLOADS
    # ============================================================

    def _signature(self, key: str, filename: str, expires: int) -> str:
        message = f"{key}\n{filename}\n{expires}".encode("utf-8")
        return hmac.new(self.secret_key.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def signed_download_url(self, key: str, filename: str, expires_in: int = 900, now: Optional[float] = None) -> str:
        expires = int((now if now is not None else time.time()) + expires_in)
        safe_name = sanitize_filename(filename)
        query = urlencode({
            "filename": safe_name,
            "expires": expires,
            "signature": self._signature(key, safe_name, expires),
        })
        return f"{self.download_path}/{quote(key)}?{query}"

    def verify_download(self, key: str, filename: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        if expires < (now if now is not None else time.time()):
            return False
        expected = self._signature(key, filename, expires)
        return hmac.compare_digest(expected, signature or "")
