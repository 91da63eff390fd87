from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
import urllib.request
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

logger = logging.getLogger("checklists.storage")

_DATA_URL_RE = re.compile(r"^data:image/(\w+);base64,(.+)$", re.DOTALL)
_DATA_URL_PREFIX_RE = re.compile(r"^data:image/\w+;base64,")
_SAFE_SEGMENT_RE = re.compile(r"[^A-Za-z0-9._-]+")
_FETCH_TIMEOUT_SEC = 10


@dataclass(frozen=True)
class Upload:
    """A binary form part, already read into memory."""

    data: bytes
    filename: str = ""
    content_type: str = ""


class ObjectStorage(Protocol):
    async def put_bytes(self, data: bytes, *, prefix: str, filename: str, content_type: str) -> str: ...

    async def get_bytes(self, url: str) -> Optional[bytes]: ...

    def read_bytes(self, url: str) -> Optional[bytes]: ...

    def download_url(self, url: str) -> str: ...


def guess_image_extension(raw: bytes) -> Optional[str]:
    if raw.startswith(b"\xff\xd8\xff"):
        return ".jpg"
    if raw.startswith(b"\x89PNG\r\n\x1a\n"):
        return ".png"
    if len(raw) >= 12 and raw[0:4] == b"RIFF" and raw[8:12] == b"WEBP":
        return ".webp"
    if len(raw) >= 16 and raw[4:8] == b"ftyp":
        brand = raw[8:12].lower()
        if brand in {b"heic", b"heix", b"hevc", b"hevx", b"mif1", b"msf1"}:
            return ".heic"
    return None


def object_name(raw: bytes, filename: str = "", default_ext: str = ".jpg") -> str:
    ext = guess_image_extension(raw)
    if not ext:
        ext = Path(filename or "").suffix.lower() or default_ext
    if ext == ".jpeg":
        ext = ".jpg"
    return f"{uuid.uuid4().hex}{ext}"


def decode_data_url(data_url: str) -> bytes:
    """Bytes of a `data:image/...;base64,` URL (a bare base64 string is accepted too)."""
    payload = _DATA_URL_PREFIX_RE.sub("", (data_url or "").strip())
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64 image") from exc


def _safe_prefix(prefix: str) -> str:
    parts = [_SAFE_SEGMENT_RE.sub("-", p).strip("-.") for p in str(prefix or "").split("/")]
    return "/".join(p for p in parts if p)


class LocalObjectStorage:
    """
    Object storage on the local disk, served under `public_base_url`.
    """

    def __init__(self, root: Path, public_base_url: str, *, secret: str, max_age: int = 3600) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self.max_age = max_age
        self._ser = URLSafeTimedSerializer(secret, salt="checklist-download")

    # --- write ---
    def _write(self, key: str, data: bytes) -> None:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    async def put_bytes(self, data: bytes, *, prefix: str, filename: str, content_type: str) -> str:
        name = _SAFE_SEGMENT_RE.sub("-", Path(filename).name) or object_name(data)
        key = f"{_safe_prefix(prefix)}/{name}" if _safe_prefix(prefix) else name
        await asyncio.to_thread(self._write, key, data)
        logger.info("Stored object %s (%s, %s bytes)", key, content_type or "-", len(data))
        return f"{self.public_base_url}/{key}"

    # --- read ---
    def key_for(self, url: str) -> Optional[str]:
        base = f"{self.public_base_url}/"
        if not url.startswith(base):
            return None
        key = url[len(base):].split("?", 1)[0]
        if not key or ".." in key.split("/"):
            return None
        return key

    def path_for(self, key: str) -> Optional[Path]:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            return None
        return path

    def read_bytes(self, url: str) -> Optional[bytes]:
        url = (url or "").strip()
        if not url:
            return None
        m = _DATA_URL_RE.match(url)
        if m:
            try:
                return base64.b64decode(m.group(2))
            except (binascii.Error, ValueError):
                logger.warning("Invalid data URL image (%s)", m.group(1))
                return None

        key = self.key_for(url)
        if key is not None:
            path = self.path_for(key)
            if path is None or not path.is_file():
                logger.warning("Stored object missing: %s", key)
                return None
            return path.read_bytes()

        if url.startswith(("http://", "https://")):
            req = urllib.request.Request(
                url,
                headers={"User-Agent": "Mozilla/5.0", "Accept": "image/png,image/jpeg,image/*,*/*"},
            )
            try:
                with urllib.request.urlopen(req, timeout=_FETCH_TIMEOUT_SEC) as resp:
                    data = resp.read()
            except OSError as exc:
                logger.warning("Failed to fetch %s: %s", url[:100], exc)
                return None
            return data or None

        logger.warning("Unsupported object URL: %s", url[:100])
        return None

    async def get_bytes(self, url: str) -> Optional[bytes]:
        return await asyncio.to_thread(self.read_bytes, url)

    # --- time-limited links ---
    def download_url(self, url: str) -> str:
        key = self.key_for(url)
        if key is None:
            return url
        token = self._ser.dumps({"k": key})
        return f"{self.public_base_url}/signed/{token}"

    def resolve_download_token(self, token: str) -> Optional[Path]:
        try:
            payload = self._ser.loads(token, max_age=self.max_age)
        except (BadSignature, SignatureExpired):
            return None
        key = str((payload or {}).get("k") or "")
        if not key or ".." in key.split("/"):
            return None
        path = self.path_for(key)
        if path is None or not path.is_file():
            return None
        return path
