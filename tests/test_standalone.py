"""Tests for engine-wide functions."""

import pytest

from whisper_bind import (
    get_lang_id,
    get_lang_max_id,
    get_lang_str,
    get_lang_str_full,
    get_version,
    print_system_info,
)


class TestLanguages:
    """Test language lookups."""

    def test_lang_max_id(self, fake_lib):
        assert get_lang_max_id() == 2

    @pytest.mark.parametrize("lang,expected", [("de", 2), ("german", 2), ("en", 0)])
    def test_lang_id(self, fake_lib, lang, expected):
        """Test lookup by short code and by full name."""
        assert get_lang_id(lang) == expected

    def test_unknown_lang_id(self, fake_lib):
        """Test that unknown languages return None."""
        assert get_lang_id("klingon") is None

    def test_lang_id_null_byte(self, fake_lib):
        """Test that embedded null bytes are rejected."""
        with pytest.raises(ValueError, match="lang must not contain null bytes"):
            get_lang_id("e\0n")

    def test_lang_str(self, fake_lib):
        """Test mapping ids back to codes and names."""
        assert get_lang_str(2) == "de"
        assert get_lang_str_full(2) == "german"

    def test_lang_str_unknown(self, fake_lib):
        """Test that unknown ids return None."""
        assert get_lang_str(99) is None
        assert get_lang_str_full(-1) is None


class TestSystemInfo:
    def test_version(self, fake_lib):
        assert get_version() == "1.7.6"

    def test_system_info(self, fake_lib):
        assert "AVX" in print_system_info()
