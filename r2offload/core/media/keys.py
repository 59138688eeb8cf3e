"""
Object key derivation.

Keys mirror the uploads directory layout: "YYYY/MM/filename", using the
record's upload date. That keeps remote URLs recognisable and lets the
URL resolver turn a primary URL into a variant URL by swapping the
filename.

Variant filenames already carrying a "-WxH" size suffix are used as-is.
They were produced by the image editor and the resolver relies on the
suffix surviving unchanged.
"""

import logging
import re
from datetime import datetime
from typing import Optional

from .models import FULL_VARIANT, Credentials, utcnow

logger = logging.getLogger(__name__)

SIZE_SUFFIX_PATTERN = re.compile(r"-(\d+x\d+)(\.[A-Za-z0-9]+)$")

# Characters that are stripped from filenames before they become keys
_SPECIAL_CHARS = re.compile(r"[?\[\]/\\=<>:;,'\"&$#*()|~`!{}%+\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"[\s]+")
_REPEATED_DASHES = re.compile(r"-{2,}")


def sanitize_filename(filename: str) -> str:
    """
    Make a filename safe to use as the last key segment.

    Special characters are dropped, runs of whitespace become a single
    dash, and leading/trailing dots, dashes and underscores are trimmed.
    "My Photo (1).JPG" becomes "My-Photo-1.JPG".
    """
    name = _SPECIAL_CHARS.sub("", filename)
    name = _WHITESPACE.sub("-", name)
    name = _REPEATED_DASHES.sub("-", name)
    name = name.strip(".-_")
    return name or "file"


class KeyDeriver:
    """Builds object keys and their public URLs for one bucket."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def derive_key(
        self,
        record_id: int,
        filename: str,
        variant: str = FULL_VARIANT,
        uploaded_at: Optional[datetime] = None,
    ) -> str:
        """
        Key for one file of a record.

        uploaded_at is the record's creation time. When the host cannot
        supply one, the current time is used.
        """
        when = uploaded_at or utcnow()
        prefix = when.strftime("%Y/%m")

        if variant != FULL_VARIANT and SIZE_SUFFIX_PATTERN.search(filename):
            name = filename
        else:
            name = sanitize_filename(filename)

        key = f"{prefix}/{name}"
        logger.debug(
            "Derived object key",
            extra={"record_id": record_id, "variant": variant, "key": key},
        )
        return key

    def public_url(self, key: str) -> str:
        """
        Public URL of a key.

        A configured custom domain (CDN) wins. Otherwise the bucket is
        addressed path-style on the API endpoint, which only works for
        buckets with public access enabled.
        """
        base = self._credentials.custom_public_base_url
        if base:
            return f"{base.rstrip('/')}/{key}"
        return f"{self._credentials.endpoint}/{self._credentials.bucket_name}/{key}"
