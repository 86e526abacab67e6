"""
Unit tests for certificate storage and introspection.
"""
import os
import stat
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from conftest import make_self_signed
import tls.storage
from tls.errors import CertificateLoadError
from tls.storage import (
    CertificateBundle,
    CertificateStorage,
    is_expiring,
    load_x509_key_pair,
)


class TestCertificateBundle:
    """Tests for CertificateBundle.from_pem()."""

    def test_parses_valid_pair(self):
        """A matching pair parses and exposes its SANs."""
        cert_pem, key_pem = make_self_signed(["search.example.com", "www.example.com"], timedelta(days=90))
        bundle = CertificateBundle.from_pem(cert_pem, key_pem)
        assert bundle.dns_names() == ["search.example.com", "www.example.com"]

    def test_accepts_str_pem(self):
        """PEM given as text is accepted."""
        cert_pem, key_pem = make_self_signed(["a.example.com"], timedelta(days=90))
        bundle = CertificateBundle.from_pem(cert_pem.decode(), key_pem.decode())
        assert bundle.cert_pem == cert_pem

    def test_mismatched_key_rejected(self):
        """A key from a different certificate is rejected."""
        cert_pem, _ = make_self_signed(["a.example.com"], timedelta(days=90))
        _, other_key = make_self_signed(["a.example.com"], timedelta(days=90))
        with pytest.raises(CertificateLoadError, match="does not match"):
            CertificateBundle.from_pem(cert_pem, other_key)

    def test_garbage_certificate_rejected(self):
        """Non-PEM certificate data is rejected."""
        _, key_pem = make_self_signed(["a.example.com"], timedelta(days=90))
        with pytest.raises(CertificateLoadError):
            CertificateBundle.from_pem(b"not a certificate", key_pem)

    def test_garbage_key_rejected(self):
        """Non-PEM key data is rejected."""
        cert_pem, _ = make_self_signed(["a.example.com"], timedelta(days=90))
        with pytest.raises(CertificateLoadError, match="private key"):
            CertificateBundle.from_pem(cert_pem, b"not a key")


class TestCertInfo:
    """Tests for cert_info() and the expiry window."""

    def test_short_lived_cert_is_expiring(self):
        """Ten days of validity is inside the renewal window."""
        cert_pem, key_pem = make_self_signed(["a.example.com"], timedelta(days=10))
        info = CertificateBundle.from_pem(cert_pem, key_pem).cert_info()
        assert info.is_expiring is True
        assert info.days_until_expiry() in (9, 10)

    def test_long_lived_cert_is_not_expiring(self):
        """Ninety days of validity is outside the window."""
        cert_pem, key_pem = make_self_signed(["a.example.com"], timedelta(days=90))
        info = CertificateBundle.from_pem(cert_pem, key_pem).cert_info()
        assert info.is_expiring is False

    def test_subject_and_issuer_common_names(self):
        """Subject and issuer come from the common names."""
        cert_pem, key_pem = make_self_signed(["a.example.com"], timedelta(days=90), issuer_cn="Test CA")
        info = CertificateBundle.from_pem(cert_pem, key_pem).cert_info()
        assert info.subject == "a.example.com"
        assert info.issuer == "Test CA"
        assert info.not_before < info.not_after

    def test_expired_cert_reports_zero_days(self):
        """days_until_expiry never goes negative."""
        cert_pem, key_pem = make_self_signed(["a.example.com"], timedelta(seconds=1))
        info = CertificateBundle.from_pem(cert_pem, key_pem).cert_info(
            now=datetime.now(timezone.utc) + timedelta(days=1)
        )
        assert info.is_expiring is True
        assert info.to_dict()["days_until_expiry"] == 0

    def test_window_boundary(self):
        """Exactly 30 days left is not expiring; one second less is."""
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert is_expiring(now + timedelta(days=30), now) is False
        assert is_expiring(now + timedelta(days=30) - timedelta(seconds=1), now) is True


class TestLoadKeyPair:
    """Tests for load_x509_key_pair()."""

    def test_loads_from_disk(self, cert_factory):
        """Files written by the fixture load into a bundle."""
        cert_path, key_path = cert_factory(names=("search.example.com",))
        assert load_x509_key_pair(cert_path, key_path).dns_names() == ["search.example.com"]

    def test_missing_file(self, tmp_path):
        """A missing file raises CertificateLoadError."""
        with pytest.raises(CertificateLoadError, match="Cannot read"):
            load_x509_key_pair(tmp_path / "nope.pem", tmp_path / "nope.key")


class TestCertificateStorage:
    """Tests for CertificateStorage."""

    def test_save_sets_permissions(self, tmp_path):
        """The key is 0600, the certificate 0644 and the directory 0700."""
        storage = CertificateStorage(tmp_path / "certs")
        cert_pem, key_pem = make_self_signed(["a.example.com"], timedelta(days=90))
        assert storage.save_certificate(CertificateBundle.from_pem(cert_pem, key_pem)) is True

        assert stat.S_IMODE(os.stat(storage.key_path).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(storage.cert_path).st_mode) == 0o644
        assert stat.S_IMODE(os.stat(storage.certs_dir).st_mode) == 0o700
        assert storage.cert_path.read_bytes() == cert_pem

    def test_load_round_trip(self, tmp_path):
        """A saved pair loads back equal."""
        storage = CertificateStorage(tmp_path / "certs")
        cert_pem, key_pem = make_self_signed(["a.example.com"], timedelta(days=90))
        bundle = CertificateBundle.from_pem(cert_pem, key_pem)
        storage.save_certificate(bundle)
        assert storage.load_certificate() == bundle

    def test_load_absent(self, tmp_path):
        """Nothing stored yields None."""
        storage = CertificateStorage(tmp_path / "certs")
        assert storage.has_certificate() is False
        assert storage.load_certificate() is None

    def test_load_invalid_returns_none(self, tmp_path):
        """A corrupt stored pair is ignored."""
        storage = CertificateStorage(tmp_path / "certs")
        storage.ensure_directory()
        storage.cert_path.write_bytes(b"junk")
        storage.key_path.write_bytes(b"junk")
        assert storage.load_certificate() is None

    def test_overwrite_leaves_no_temp_files(self, tmp_path):
        """Replacing a pair leaves only the two target files behind."""
        storage = CertificateStorage(tmp_path / "certs")
        for _ in range(2):
            cert_pem, key_pem = make_self_signed(["a.example.com"], timedelta(days=90))
            storage.save_certificate(CertificateBundle.from_pem(cert_pem, key_pem))
        assert sorted(p.name for p in storage.certs_dir.iterdir()) == ["certificate.pem", "private.key"]

    def _saved_pair(self, storage, name):
        cert_pem, key_pem = make_self_signed([name], timedelta(days=90))
        bundle = CertificateBundle.from_pem(cert_pem, key_pem)
        assert storage.save_certificate(bundle) is True
        return bundle

    def test_failed_certificate_write_keeps_previous_pair(self, tmp_path):
        """A write that fails for the certificate does not touch the stored key."""
        storage = CertificateStorage(tmp_path / "certs")
        previous = self._saved_pair(storage, "a.example.com")
        cert_pem, key_pem = make_self_signed(["b.example.com"], timedelta(days=90))
        real_stage = tls.storage._stage_file

        def _disk_full(path, data, mode):
            if path == storage.cert_path:
                raise OSError("disk full")
            return real_stage(path, data, mode)

        with patch("tls.storage._stage_file", side_effect=_disk_full):
            assert storage.save_certificate(CertificateBundle.from_pem(cert_pem, key_pem)) is False

        assert storage.load_certificate() == previous
        assert sorted(p.name for p in storage.certs_dir.iterdir()) == ["certificate.pem", "private.key"]

    def test_failed_certificate_replace_restores_key(self, tmp_path):
        """If the certificate cannot be swapped in, the previous key is put back."""
        storage = CertificateStorage(tmp_path / "certs")
        previous = self._saved_pair(storage, "a.example.com")
        cert_pem, key_pem = make_self_signed(["b.example.com"], timedelta(days=90))
        real_replace = os.replace

        def _replace(src, dst):
            if dst == storage.cert_path:
                raise OSError("read-only file system")
            return real_replace(src, dst)

        with patch("tls.storage.os.replace", side_effect=_replace):
            assert storage.save_certificate(CertificateBundle.from_pem(cert_pem, key_pem)) is False

        assert storage.load_certificate() == previous
        assert stat.S_IMODE(os.stat(storage.key_path).st_mode) == 0o600
        assert sorted(p.name for p in storage.certs_dir.iterdir()) == ["certificate.pem", "private.key"]
