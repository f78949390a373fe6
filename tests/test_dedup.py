"""Tests for the content deduplicator."""

import hashlib

import pytest

from fxharvest.dedup import ContentDeduplicator, fingerprint


class TestFingerprint:

    @pytest.mark.unit
    def test_is_sha256_hex(self, png_bytes):
        assert fingerprint(png_bytes) == hashlib.sha256(png_bytes).hexdigest()
        assert len(fingerprint(png_bytes)) == 64

    @pytest.mark.unit
    def test_deterministic(self, png_bytes):
        assert fingerprint(png_bytes) == fingerprint(bytes(png_bytes))

    @pytest.mark.unit
    def test_distinct_fixtures_differ(self, png_bytes, other_bytes):
        assert fingerprint(png_bytes) != fingerprint(other_bytes)
        assert fingerprint(b"") != fingerprint(b"\x00")


class TestContentDeduplicator:

    @pytest.mark.unit
    def test_identical_bytes_from_different_sources_are_duplicates(self, png_bytes):
        dedup = ContentDeduplicator()
        first = bytes(png_bytes)
        second = bytearray(png_bytes)  # different object, same content
        dedup.record(dedup.fingerprint(first))
        assert dedup.is_duplicate(dedup.fingerprint(bytes(second))) is True

    @pytest.mark.unit
    def test_unrecorded_is_not_duplicate(self, png_bytes, other_bytes):
        dedup = ContentDeduplicator()
        dedup.record(fingerprint(png_bytes))
        assert dedup.is_duplicate(fingerprint(other_bytes)) is False

    @pytest.mark.unit
    def test_check_and_record(self, png_bytes):
        dedup = ContentDeduplicator()
        digest = fingerprint(png_bytes)
        assert dedup.check_and_record(digest) is True
        assert dedup.check_and_record(digest) is False
        assert len(dedup) == 1
        assert digest in dedup

    @pytest.mark.unit
    def test_forget_and_reset(self, png_bytes, other_bytes):
        dedup = ContentDeduplicator([fingerprint(png_bytes), fingerprint(other_bytes)])
        dedup.forget(fingerprint(png_bytes))
        assert not dedup.is_duplicate(fingerprint(png_bytes))
        dedup.reset()
        assert len(dedup) == 0
