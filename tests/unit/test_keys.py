"""
Tests for object key derivation and public URLs.
"""

from datetime import datetime, timezone

import pytest

from r2offload.core.media.keys import KeyDeriver, sanitize_filename
from r2offload.core.media.models import Credentials

MARCH_2024 = datetime(2024, 3, 9, 8, 0, tzinfo=timezone.utc)


def make_credentials(**overrides) -> Credentials:
    fields = dict(
        account_id="acct123",
        access_key_id="AKID",
        secret_access_key="secret",
        bucket_name="media",
    )
    fields.update(overrides)
    return Credentials(**fields)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

class TestDeriveKey:
    """Keys are YYYY/MM/filename from the record's upload date."""

    def test_primary_key(self):
        deriver = KeyDeriver(make_credentials())
        assert deriver.derive_key(1, "cat.jpg", uploaded_at=MARCH_2024) == "2024/03/cat.jpg"

    def test_variant_with_size_suffix_is_kept_verbatim(self):
        deriver = KeyDeriver(make_credentials())
        key = deriver.derive_key(1, "cat-150x150.jpg", variant="thumbnail", uploaded_at=MARCH_2024)
        assert key == "2024/03/cat-150x150.jpg"

    def test_primary_filename_is_sanitized(self):
        deriver = KeyDeriver(make_credentials())
        key = deriver.derive_key(1, "My Photo (1).JPG", uploaded_at=MARCH_2024)
        assert key == "2024/03/My-Photo-1.JPG"

    def test_variant_without_size_suffix_is_sanitized(self):
        deriver = KeyDeriver(make_credentials())
        key = deriver.derive_key(1, "cat (crop).jpg", variant="custom", uploaded_at=MARCH_2024)
        assert key == "2024/03/cat-crop.jpg"

    def test_month_is_zero_padded(self):
        deriver = KeyDeriver(make_credentials())
        when = datetime(2023, 11, 30, tzinfo=timezone.utc)
        assert deriver.derive_key(1, "a.png", uploaded_at=when) == "2023/11/a.png"

    def test_missing_date_uses_current_month(self):
        deriver = KeyDeriver(make_credentials())
        key = deriver.derive_key(1, "a.png")
        assert key.endswith("/a.png")
        year, month, _ = key.split("/")
        assert len(year) == 4 and len(month) == 2


class TestSanitizeFilename:

    @pytest.mark.parametrize(
        "filename, expected",
        [
            ("My Photo (1).JPG", "My-Photo-1.JPG"),
            ("plain.jpg", "plain.jpg"),
            ("  spaced   out .png", "spaced-out-.png"),
            ("what?#&.gif", "what.gif"),
            ("-leading.jpg", "leading.jpg"),
            ("???", "file"),
        ],
    )
    def test_sanitize(self, filename, expected):
        assert sanitize_filename(filename) == expected


# ---------------------------------------------------------------------------
# Public URLs
# ---------------------------------------------------------------------------

class TestPublicUrl:

    def test_custom_base_url_wins(self):
        deriver = KeyDeriver(make_credentials(custom_public_base_url="https://cdn.example.com"))
        assert deriver.public_url("2024/03/cat.jpg") == "https://cdn.example.com/2024/03/cat.jpg"

    def test_custom_base_url_trailing_slash_is_trimmed(self):
        deriver = KeyDeriver(make_credentials(custom_public_base_url="https://cdn.example.com/"))
        assert deriver.public_url("2024/03/cat.jpg") == "https://cdn.example.com/2024/03/cat.jpg"

    def test_falls_back_to_path_style_endpoint(self):
        deriver = KeyDeriver(make_credentials())
        assert deriver.public_url("2024/03/cat.jpg") == (
            "https://acct123.r2.cloudflarestorage.com/media/2024/03/cat.jpg"
        )

    def test_endpoint_override(self):
        deriver = KeyDeriver(make_credentials(endpoint_url="http://localhost:9000/"))
        assert deriver.public_url("k.jpg") == "http://localhost:9000/media/k.jpg"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class TestCredentials:

    def test_configured_when_all_required_fields_set(self):
        assert make_credentials().is_configured()

    @pytest.mark.parametrize(
        "field", ["account_id", "access_key_id", "secret_access_key", "bucket_name"]
    )
    def test_any_empty_required_field_means_not_configured(self, field):
        assert not make_credentials(**{field: ""}).is_configured()

    def test_repr_hides_secret(self):
        assert "hunter2" not in repr(make_credentials(secret_access_key="hunter2"))

    def test_host(self):
        assert make_credentials().host == "acct123.r2.cloudflarestorage.com"
        assert make_credentials(endpoint_url="http://localhost:9000").host == "localhost:9000"
