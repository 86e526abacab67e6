"""
Shared test fixtures.

Certificates are minted on the fly with cryptography and the API is
exercised over ASGI; nothing here touches the network.
"""
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from fastapi import FastAPI

import tls.vault
from tls.routes import router as tls_router


def make_self_signed(
    names: list[str],
    valid_for: timedelta,
    issuer_cn: str = "",
) -> tuple[bytes, bytes]:
    """Return (cert_pem, key_pem) for a self-signed EC certificate."""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn or names[0])])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + valid_for)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in names]), critical=False)
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem


@pytest.fixture
def cert_factory(tmp_path):
    """Write a self-signed pair to tmp_path and return (cert_path, key_path)."""
    counter = {"n": 0}

    def _make(names=("search.example.com",), valid_for=timedelta(days=90), issuer_cn=""):
        counter["n"] += 1
        cert_pem, key_pem = make_self_signed(list(names), valid_for, issuer_cn)
        cert_path = tmp_path / f"cert{counter['n']}.pem"
        key_path = tmp_path / f"key{counter['n']}.pem"
        cert_path.write_bytes(cert_pem)
        key_path.write_bytes(key_pem)
        return cert_path, key_path

    return _make


@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def fast_kdf(monkeypatch):
    """Cheap scrypt cost for tests that seal many envelopes."""
    monkeypatch.setattr(tls.vault, "SCRYPT_N", 2 ** 4)


@pytest.fixture
def test_app(tmp_path, fast_kdf):
    """FastAPI app with the TLS router and the state startup would set."""
    app = FastAPI()
    app.include_router(tls_router)
    app.state.tls_manager = None
    app.state.secret_key = "server-secret"
    app.state.ssl_config_path = tmp_path / "server.yml"
    return app


@pytest_asyncio.fixture
async def async_client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
