"""
auth/uploads.py -- Avatar upload collaborator.

AuthService.register() needs a usable avatar URL before it creates a record.
It talks to any object with upload(avatar) -> str | None and discard(url); the
default implementation writes the image under MEDIA_DIR/avatars/ and returns
its public URL under MEDIA_URL.

upload() returns None (never raises) when the file is rejected or cannot be
written. The service turns a None into an UpstreamFailure result.
discard() removes a stored avatar when the user record could not be created.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Protocol

from auth.models import Avatar

logger = logging.getLogger("storefront.uploads")

_ALLOWED_TYPES: dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


class AvatarUploader(Protocol):
    def upload(self, avatar: Avatar) -> str | None: ...

    def discard(self, url: str) -> None: ...


class LocalAvatarUploader:
    """Stores avatars on local disk under a random, unguessable file name.

    The client-supplied filename is never used as a path component -- only the
    extension derived from the content type -- so path traversal via crafted
    filenames is not possible.
    """

    def __init__(self, media_dir: Path, media_url: str = "/media", max_bytes: int = 2 * 1024 * 1024) -> None:
        self.avatar_dir = Path(media_dir) / "avatars"
        self.media_url = media_url.rstrip("/")
        self.max_bytes = max_bytes

    def upload(self, avatar: Avatar) -> str | None:
        suffix = _ALLOWED_TYPES.get(avatar.content_type.lower())
        if suffix is None:
            logger.warning("Rejected avatar %r: unsupported content type %s", avatar.filename, avatar.content_type)
            return None
        if not avatar.content:
            logger.warning("Rejected avatar %r: empty file", avatar.filename)
            return None
        if len(avatar.content) > self.max_bytes:
            logger.warning("Rejected avatar %r: %d bytes exceeds limit", avatar.filename, len(avatar.content))
            return None

        name = f"{secrets.token_hex(16)}{suffix}"
        try:
            self.avatar_dir.mkdir(parents=True, exist_ok=True)
            (self.avatar_dir / name).write_bytes(avatar.content)
        except OSError:
            logger.exception("Failed to store avatar %r", avatar.filename)
            return None
        return f"{self.media_url}/avatars/{name}"

    def discard(self, url: str) -> None:
        """Delete an avatar stored by upload(). URLs this uploader did not issue are ignored."""
        prefix = f"{self.media_url}/avatars/"
        if not url.startswith(prefix):
            return
        name = url[len(prefix):]
        if not name or "/" in name or name.startswith("."):
            return
        try:
            (self.avatar_dir / name).unlink(missing_ok=True)
        except OSError:
            logger.exception("Failed to remove avatar %s", name)
