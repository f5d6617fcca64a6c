"""
Content-type inference and binary-key detection for object keys.

Keys under the binary prefix (`images/`) are binary regardless of their
extension. Everything else is classified by the content type inferred
from the extension.
"""

from __future__ import annotations

import mimetypes
import posixpath
from typing import Optional

from blobcoord.core import constants as C

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Extensions resolved here first; mimetypes differs between platforms.
EXTENSION_CONTENT_TYPES: dict[str, str] = {
    ".json": "application/json",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".html": "text/html",
    ".csv": "text/csv",
    ".xml": "application/xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".bmp": "image/bmp",
    ".pdf": "application/pdf",
}

IMAGE_EXTENSIONS = frozenset(
    ext for ext, ctype in EXTENSION_CONTENT_TYPES.items() if ctype.startswith("image/")
)


def extension_of(key: str) -> str:
    return posixpath.splitext(key)[1].lower()


def guess_content_type(key: str) -> str:
    """Infer a content type from the key's extension."""
    ext = extension_of(key)
    if ext in EXTENSION_CONTENT_TYPES:
        return EXTENSION_CONTENT_TYPES[ext]
    guessed, _ = mimetypes.guess_type(key, strict=False)
    return guessed or DEFAULT_CONTENT_TYPE


def is_json_key(key: str) -> bool:
    return key.lower().endswith(C.JSON_SUFFIX)


def is_text_content_type(content_type: Optional[str]) -> bool:
    """True for text/* and JSON bodies, which are decoded to str on read."""
    if not content_type:
        return False
    ctype = content_type.split(";", 1)[0].strip().lower()
    return ctype.startswith("text/") or ctype == "application/json" or ctype.endswith("+json")


def is_binary_key(key: str) -> bool:
    """
    Binary-looking keys are gated under memory pressure.

    A key is binary if it lives under the binary prefix or its inferred
    content type is neither text nor JSON.
    """
    if key.startswith(C.BINARY_KEY_PREFIX):
        return True
    ctype = guess_content_type(key)
    if ctype == DEFAULT_CONTENT_TYPE and not extension_of(key):
        return False
    return not is_text_content_type(ctype)


def is_opengraph_image_key(key: str) -> bool:
    return key.startswith(C.OPENGRAPH_IMAGE_PREFIX)
