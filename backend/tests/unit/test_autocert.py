"""
Unit tests for the HTTP-01 autocert manager.
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_self_signed
from tls.autocert import AutocertManager
from tls.challenges import HTTPChallengeStore
from tls.storage import CertificateBundle, CertificateStorage


def _bundle(name, valid_for=timedelta(days=90)) -> CertificateBundle:
    return CertificateBundle.from_pem(*make_self_signed([name], valid_for))


def _autocert(tmp_path, domains=("a.example.com", "b.example.com"), on_update=None):
    return AutocertManager(
        domains=list(domains),
        email="ops@example.com",
        staging=True,
        certs_dir=tmp_path / "certs",
        store=HTTPChallengeStore(),
        on_update=on_update,
    )


class TestCache:
    """Cached certificates and lookups."""

    def test_load_cached(self, tmp_path):
        """Certificates under certs/<domain> are loaded in whitelist order."""
        b = _bundle("b.example.com")
        CertificateStorage(tmp_path / "certs" / "b.example.com").save_certificate(b)
        autocert = _autocert(tmp_path)

        assert autocert.load_cached() == 1
        assert autocert.certificates() == (b,)
        assert autocert.due_for_renewal() == ["a.example.com"]

    def test_get_certificate_respects_whitelist(self, tmp_path):
        """Names outside the whitelist never get a certificate."""
        autocert = _autocert(tmp_path)
        a = _bundle("a.example.com")
        autocert._certs["a.example.com"] = a

        assert autocert.get_certificate("A.example.com.") is a
        assert autocert.get_certificate("evil.example.com") is None
        assert autocert.get_certificate(None) is a

    def test_expiring_is_due(self, tmp_path):
        autocert = _autocert(tmp_path, domains=("a.example.com",))
        autocert._certs["a.example.com"] = _bundle("a.example.com", timedelta(days=3))
        assert autocert.due_for_renewal() == ["a.example.com"]


class TestObtain:
    """Issuance through the ACME client."""

    @pytest.mark.asyncio
    async def test_obtain_saves_and_notifies(self, tmp_path):
        """A new certificate is cached on disk and pushed to on_update."""
        on_update = MagicMock()
        autocert = _autocert(tmp_path, domains=("a.example.com",), on_update=on_update)
        a = _bundle("a.example.com")
        client = MagicMock()
        client.obtain_certificate = AsyncMock(return_value=a)
        autocert._client = client

        await autocert.obtain("a.example.com")

        assert CertificateStorage(tmp_path / "certs" / "a.example.com").load_certificate() == a
        on_update.assert_called_once_with((a,))

    @pytest.mark.asyncio
    async def test_obtain_rejects_unlisted_host(self, tmp_path):
        with pytest.raises(ValueError):
            await _autocert(tmp_path).obtain("evil.example.com")

    @pytest.mark.asyncio
    async def test_renew_due_counts_failures(self, tmp_path):
        """One failing domain does not stop the others."""
        autocert = _autocert(tmp_path)
        b = _bundle("b.example.com")

        async def _obtain(domains, solver):
            if domains == ["a.example.com"]:
                raise RuntimeError("rate limited")
            return b

        client = MagicMock()
        client.obtain_certificate = AsyncMock(side_effect=_obtain)
        autocert._client = client

        assert await autocert.renew_due() == 1
        assert autocert.certificates() == (b,)

    @pytest.mark.asyncio
    async def test_start_stop(self, tmp_path):
        """The loop starts once and stops cleanly."""
        autocert = _autocert(tmp_path)
        autocert.renew_due = AsyncMock(return_value=0)
        await autocert.start(check_interval=3600)
        await autocert.start(check_interval=3600)
        await asyncio.sleep(0)
        await autocert.stop()
        autocert.renew_due.assert_awaited_once()
