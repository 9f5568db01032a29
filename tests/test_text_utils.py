"""
Tests for hashing and text normalization helpers.
"""

import re
from src.utils.text import (
    content_hash, normalize_whitespace, normalize_body_for_summary, normalize_summary_for_embedding, chunked
)


class TestContentHash:
    def test_is_64_lowercase_hex(self):
        digest = content_hash("Good course, fair workload.")
        assert re.fullmatch(r"[0-9a-f]{64}", digest)

    def test_known_sha256(self):
        assert content_hash("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_stable_and_content_sensitive(self):
        assert content_hash("Too much homework.") == content_hash("Too much homework.")
        assert content_hash("Too much homework.") != content_hash("Too much homework!")

    def test_utf8_text(self):
        assert content_hash("課題が多い") == content_hash("課題が多い")
        assert len(content_hash("")) == 64


class TestNormalization:
    def test_collapses_whitespace(self):
        assert normalize_whitespace("  Loved\n\tthe   teacher. ") == "Loved the teacher."
        assert normalize_whitespace(None) == ""

    def test_body_kept_when_short(self):
        assert normalize_body_for_summary("short  body", max_chars=20) == "short body"

    def test_body_capped_with_ellipsis(self):
        body = "x" * 1300
        capped = normalize_body_for_summary(body)
        assert capped == "x" * 1200 + "…"

    def test_summary_for_embedding(self):
        assert normalize_summary_for_embedding(" - good\n - bad ") == "- good - bad"
        assert normalize_summary_for_embedding("") == ""


def test_chunked_slices():
    assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]
    assert list(chunked([], 16)) == []
