"""
Public URL resolution and content rewriting.

Once a file is offloaded, every place that would have pointed at the
local uploads directory should point at the object store instead:
single attachment URLs, responsive image srcsets, and URLs embedded in
stored HTML content.

Only the primary's remote URL is needed to address any variant. Variant
keys share the primary's "YYYY/MM/" prefix, so a variant URL is the
primary URL with the "-WxH" size suffix inserted before the extension,
or with the filename swapped for the variant's filename.

With URL rewriting disabled the rewrite methods return their input
unchanged and variant_url() resolves nothing.
"""

import logging
import re
from typing import Optional

from .keys import SIZE_SUFFIX_PATTERN
from .models import FULL_VARIANT, OffloadConfig
from .store import MediaRecordStore

_EXTENSION_PATTERN = re.compile(r"(\.[A-Za-z0-9]+)$")
_SRCSET_ENTRY_PATTERN = re.compile(r"^(.+?)\s+(\d+w|\d+(?:\.\d+)?x)$")
_TAG_PATTERN = re.compile(r"<(?:img|a|audio|video|source)\b[^>]*>", re.IGNORECASE)
_URL_ATTRIBUTE_PATTERN = re.compile(
    r"""(?<![\w-])(src|href)=(["'])([^"']+)\2""",
    re.IGNORECASE,
)
_SRCSET_ATTRIBUTE_PATTERN = re.compile(r"""(?<![\w-])srcset=(["'])([^"']+)\1""", re.IGNORECASE)


def insert_size_suffix(url: str, suffix: str) -> str:
    """Insert "-{suffix}" before the extension of a URL."""
    return _EXTENSION_PATTERN.sub(lambda m: f"-{suffix}{m.group(1)}", url, count=1)


def strip_size_suffix(url: str) -> str:
    """Turn ".../cat-150x150.jpg" back into ".../cat.jpg"."""
    return SIZE_SUFFIX_PATTERN.sub(lambda m: m.group(2), url, count=1)


class URLResolver:
    """
    Maps local media URLs to their remote counterparts.

    uploads_base_url is the public URL of the local uploads directory,
    e.g. "https://example.com/wp-content/uploads". Content rewriting only
    touches URLs under it.
    """

    def __init__(
        self,
        store: MediaRecordStore,
        config: OffloadConfig,
        uploads_base_url: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._config = config
        self._uploads_base_url = uploads_base_url.rstrip("/")
        self._logger = logger or logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return self._config.enable_url_rewrite

    # -------------------------------------------------------------------------
    # Single URLs
    # -------------------------------------------------------------------------

    def rewrite_reference_url(self, original_url: str, record_id: int) -> str:
        """
        Remote URL for a local reference to a record's file.

        For images, a "-WxH" suffix on the local URL is carried over to
        the remote primary URL. Records without remote metadata keep the
        local URL.
        """
        if not self.enabled:
            return original_url

        record = self._store.get(record_id)
        if record is None or not record.is_synced:
            return original_url

        full_url = record.remote[FULL_VARIANT].url
        filename = original_url.split("?", 1)[0].rsplit("/", 1)[-1]
        if filename == record.variants[FULL_VARIANT]:
            return full_url

        match = SIZE_SUFFIX_PATTERN.search(filename)
        if match and record.is_image:
            return insert_size_suffix(full_url, match.group(1))
        return full_url

    def variant_url(self, record_id: int, variant: str = FULL_VARIANT) -> Optional[str]:
        """
        Remote URL of a named variant.

        Prefers the variant's own remote metadata. When only the primary
        is remote, the variant URL is derived by replacing the primary's
        filename with the variant's local filename. Returns None when the
        record is not synced or the variant is unknown.
        """
        if not self.enabled:
            return None

        record = self._store.get(record_id)
        if record is None or not record.is_synced:
            return None

        if variant in record.remote:
            return record.remote[variant].url

        filename = record.variants.get(variant)
        if not filename:
            return None

        full_url = record.remote[FULL_VARIANT].url
        return f"{full_url.rsplit('/', 1)[0]}/{filename}"

    # -------------------------------------------------------------------------
    # Responsive images
    # -------------------------------------------------------------------------

    def rewrite_srcset(self, srcset: str, record_id: int) -> str:
        """
        Rewrite every "url descriptor" entry of a srcset attribute value.

        Entries without a width or density descriptor are kept verbatim.
        """
        if not self.enabled or not srcset.strip():
            return srcset

        rewritten = []
        for entry in srcset.split(","):
            entry = entry.strip()
            if not entry:
                continue
            match = _SRCSET_ENTRY_PATTERN.match(entry)
            if not match:
                rewritten.append(entry)
                continue
            url, descriptor = match.groups()
            rewritten.append(f"{self.rewrite_reference_url(url, record_id)} {descriptor}")

        return ", ".join(rewritten)

    def rewrite_image_attributes(self, attributes: dict[str, str], record_id: int) -> dict[str, str]:
        """Rewrite src and srcset of an image attribute map."""
        if not self.enabled:
            return attributes

        result = dict(attributes)
        if "src" in result:
            result["src"] = self.rewrite_reference_url(result["src"], record_id)
        if "srcset" in result:
            result["srcset"] = self.rewrite_srcset(result["srcset"], record_id)
        return result

    # -------------------------------------------------------------------------
    # Stored content
    # -------------------------------------------------------------------------

    def find_record_id_by_url(self, url: str) -> Optional[int]:
        """
        Look up the record a local uploads URL belongs to.

        The path relative to the uploads base URL is matched against
        records' attached_file, first as-is and then with the size suffix
        stripped (primaries may legitimately end in "-WxH").
        """
        path = url.split("#", 1)[0].split("?", 1)[0]
        if not path.startswith(self._uploads_base_url + "/"):
            return None

        relative = path[len(self._uploads_base_url) + 1:]
        record = self._store.find_by_attached_file(relative)
        if record is None:
            record = self._store.find_by_attached_file(strip_size_suffix(relative))
        if record is None:
            return None
        return record.id

    def rewrite_content(self, html: str) -> str:
        """
        Rewrite local media URLs inside an HTML fragment.

        Handles src/href of img, a, audio, video and source tags, plus
        srcset on any of them. Tags pointing at unknown files or at
        records that are not synced are left alone.
        """
        if not self.enabled or not html or self._uploads_base_url not in html:
            return html

        rewritten = _TAG_PATTERN.sub(self._rewrite_tag, html)
        if rewritten != html:
            self._logger.debug("Rewrote media URLs in content")
        return rewritten

    def _rewrite_tag(self, tag_match: re.Match) -> str:
        tag = tag_match.group(0)

        def replace_url(match: re.Match) -> str:
            attribute, quote, url = match.groups()
            record_id = self.find_record_id_by_url(url)
            if record_id is None:
                return match.group(0)
            return f"{attribute}={quote}{self.rewrite_reference_url(url, record_id)}{quote}"

        def replace_srcset(match: re.Match) -> str:
            quote, srcset = match.groups()
            first_url = srcset.strip().split(",")[0].strip().split(" ")[0]
            record_id = self.find_record_id_by_url(first_url)
            if record_id is None:
                return match.group(0)
            return f"srcset={quote}{self.rewrite_srcset(srcset, record_id)}{quote}"

        tag = _URL_ATTRIBUTE_PATTERN.sub(replace_url, tag)
        return _SRCSET_ATTRIBUTE_PATTERN.sub(replace_srcset, tag)
