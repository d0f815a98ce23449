"""Tests for name validation, path helpers, storage refs, and download names."""

from __future__ import annotations

import re

import pytest

from docvault.core.utils import (
    MAX_NAME_LENGTH,
    download_name,
    escape_like,
    file_extension,
    join_folder_path,
    make_storage_ref,
    rebase_path,
    validate_name,
)

# ---------------------------------------------------------------------------
# validate_name
# ---------------------------------------------------------------------------


class TestValidateName:
    @pytest.mark.parametrize("name", ["Root", "Tech Manuals", "plan.v2.pdf", "ü-ñ"])
    def test_valid(self, name):
        assert validate_name(name) == (True, "")

    @pytest.mark.parametrize(
        ("name", "fragment"),
        [
            ("", "empty"),
            ("   ", "empty"),
            ("a\x00b", "null"),
            ("a\x07b", "control"),
            ("a/b", "separator"),
            ("a\\b", "separator"),
            ("..", "Invalid"),
            ("CON", "Reserved"),
            ("lpt1.txt", "Reserved"),
        ],
    )
    def test_invalid(self, name, fragment):
        ok, error = validate_name(name)
        assert ok is False
        assert fragment in error

    def test_too_long(self):
        ok, error = validate_name("x" * (MAX_NAME_LENGTH + 1))
        assert ok is False
        assert "too long" in error


# ---------------------------------------------------------------------------
# Cached paths
# ---------------------------------------------------------------------------


class TestPaths:
    def test_join_root(self):
        assert join_folder_path(None, "Root") == "/Root"
        assert join_folder_path("/", "Root") == "/Root"

    def test_join_nested(self):
        assert join_folder_path("/Root", "Tech") == "/Root/Tech"

    def test_rebase_exact(self):
        assert rebase_path("/a/b", "/a/b", "/x") == "/x"

    def test_rebase_descendant(self):
        assert rebase_path("/a/b/c/d", "/a/b", "/x/y") == "/x/y/c/d"

    def test_rebase_ignores_partial_segment(self):
        assert rebase_path("/a/bc", "/a/b", "/x") == "/a/bc"

    def test_escape_like(self):
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


# ---------------------------------------------------------------------------
# Storage refs
# ---------------------------------------------------------------------------


class TestStorageRef:
    def test_new_document_ref(self):
        ref = make_storage_ref("plan.pdf")
        assert re.fullmatch(r"documents/document_new_\d+_[0-9a-f]{8}\.pdf", ref)

    def test_version_ref(self):
        ref = make_storage_ref("plan.pdf", 7)
        assert re.fullmatch(r"documents/document_7_\d+_[0-9a-f]{8}\.pdf", ref)

    def test_no_extension(self):
        assert not make_storage_ref("README").endswith(".")

    def test_refs_are_unique(self):
        assert len({make_storage_ref("a.txt") for _ in range(50)}) == 50

    def test_file_extension(self):
        assert file_extension("a.tar.gz") == "gz"
        assert file_extension("noext") == ""


# ---------------------------------------------------------------------------
# download_name
# ---------------------------------------------------------------------------


class TestDownloadName:
    def test_appends_original_extension(self):
        assert download_name("manual", "pdf", ".pdf") == "manual.pdf"

    def test_keeps_name_with_extension(self):
        assert download_name("Manual.PDF", "pdf", ".pdf") == "Manual.PDF"

    def test_falls_back_to_type(self):
        assert download_name("manual", "pdf", None) == "manual.pdf"

    def test_type_already_in_name(self):
        assert download_name("manual.pdf", "pdf", None) == "manual.pdf"

    def test_no_type(self):
        assert download_name("manual", "", None) == "manual"
