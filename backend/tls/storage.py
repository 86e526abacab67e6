"""
Certificate storage and introspection.

Loads and validates certificate/key pairs, persists issued certificates
under ``<data_dir>/certs`` with proper permissions, and extracts the
operator-facing certificate info.
"""
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtensionOID, NameOID

from .errors import CertificateLoadError


logger = logging.getLogger(__name__)

# Renew (and report expiring) when less than this much validity remains
EXPIRY_WINDOW = timedelta(days=30)

CERTIFICATE_FILE = "certificate.pem"
PRIVATE_KEY_FILE = "private.key"
ACCOUNT_KEY_FILE = "account.key"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _common_name(name: x509.Name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else ""


def is_expiring(not_after: datetime, now: Optional[datetime] = None) -> bool:
    """True when fewer than 30 days remain before not_after."""
    return not_after - (now or _utcnow()) < EXPIRY_WINDOW


@dataclass(frozen=True)
class CertInfo:
    """Information extracted from the installed certificate."""

    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    dns_names: list[str]
    is_expiring: bool

    def days_until_expiry(self) -> int:
        """Get days until certificate expires."""
        delta = self.not_after - _utcnow()
        return max(0, delta.days)

    def to_dict(self) -> dict:
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "not_before": self.not_before.isoformat(),
            "not_after": self.not_after.isoformat(),
            "dns_names": list(self.dns_names),
            "is_expiring": self.is_expiring,
            "days_until_expiry": self.days_until_expiry(),
        }


@dataclass(frozen=True)
class CertificateBundle:
    """
    A validated certificate chain plus its private key.

    Holds the raw PEM bytes (what listeners load) and the parsed leaf
    certificate (what introspection reads), so parsing happens once.
    """

    cert_pem: bytes
    key_pem: bytes
    leaf: x509.Certificate = field(compare=False)

    @classmethod
    def from_pem(cls, cert_pem: bytes | str, key_pem: bytes | str) -> "CertificateBundle":
        """
        Parse and validate a certificate chain and private key.

        Raises:
            CertificateLoadError: If either PEM is unparsable or the key
                does not match the leaf certificate
        """
        if isinstance(cert_pem, str):
            cert_pem = cert_pem.encode("utf-8")
        if isinstance(key_pem, str):
            key_pem = key_pem.encode("utf-8")

        try:
            chain = x509.load_pem_x509_certificates(cert_pem)
        except ValueError as e:
            raise CertificateLoadError(f"Cannot parse certificate: {e}")
        if not chain:
            raise CertificateLoadError("Certificate file contains no certificates")

        try:
            key = serialization.load_pem_private_key(key_pem, password=None)
        except (ValueError, TypeError) as e:
            raise CertificateLoadError(f"Cannot load private key: {e}")

        leaf = chain[0]
        _check_key_matches(leaf, key)
        return cls(cert_pem=cert_pem, key_pem=key_pem, leaf=leaf)

    @property
    def not_after(self) -> datetime:
        return self.leaf.not_valid_after_utc

    def remaining_validity(self, now: Optional[datetime] = None) -> timedelta:
        return self.not_after - (now or _utcnow())

    def dns_names(self) -> list[str]:
        try:
            san = self.leaf.extensions.get_extension_for_oid(
                ExtensionOID.SUBJECT_ALTERNATIVE_NAME
            )
        except x509.ExtensionNotFound:
            return []
        return san.value.get_values_for_type(x509.DNSName)

    def cert_info(self, now: Optional[datetime] = None) -> CertInfo:
        """Build a CertInfo snapshot; nothing is cached between calls."""
        return CertInfo(
            subject=_common_name(self.leaf.subject),
            issuer=_common_name(self.leaf.issuer),
            not_before=self.leaf.not_valid_before_utc,
            not_after=self.not_after,
            dns_names=self.dns_names(),
            is_expiring=is_expiring(self.not_after, now),
        )


def _check_key_matches(cert: x509.Certificate, key) -> None:
    """Raise CertificateLoadError unless key is the private half of cert's key."""
    cert_public_key = cert.public_key()

    if isinstance(cert_public_key, rsa.RSAPublicKey) and isinstance(key, rsa.RSAPrivateKey):
        if cert_public_key.public_numbers() != key.public_key().public_numbers():
            raise CertificateLoadError("RSA private key does not match certificate")
    elif isinstance(cert_public_key, ec.EllipticCurvePublicKey) and isinstance(
        key, ec.EllipticCurvePrivateKey
    ):
        if cert_public_key.public_numbers() != key.public_key().public_numbers():
            raise CertificateLoadError("EC private key does not match certificate")
    else:
        raise CertificateLoadError(
            f"Unsupported key type: cert={type(cert_public_key).__name__}, key={type(key).__name__}"
        )


def load_x509_key_pair(cert_file: str | Path, key_file: str | Path) -> CertificateBundle:
    """
    Read and validate a certificate/key pair from disk.

    Raises:
        CertificateLoadError: If a file is missing/unreadable or the pair is invalid
    """
    try:
        cert_pem = Path(cert_file).read_bytes()
        key_pem = Path(key_file).read_bytes()
    except OSError as e:
        raise CertificateLoadError(f"Cannot read certificate files: {e}")
    return CertificateBundle.from_pem(cert_pem, key_pem)


def _discard(tmp_name: str) -> None:
    try:
        os.unlink(tmp_name)
    except FileNotFoundError:
        pass


def _stage_file(path: Path, data: bytes, mode: int) -> str:
    """Write data to a temp file beside path and return its name."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_name, mode)
    except BaseException:
        _discard(tmp_name)
        raise
    return tmp_name


def write_private_file(path: Path, data: bytes, mode: int) -> None:
    """
    Atomically write data to path with the given permissions.

    The content goes to a temp file in the same directory which then
    replaces the target, so readers never see a partial file.
    """
    tmp_name = _stage_file(path, data, mode)
    try:
        os.replace(tmp_name, path)
    except BaseException:
        _discard(tmp_name)
        raise


class CertificateStorage:
    """Manages certificate and key storage on disk."""

    def __init__(self, certs_dir: Path):
        self.certs_dir = Path(certs_dir)
        self.cert_path = self.certs_dir / CERTIFICATE_FILE
        self.key_path = self.certs_dir / PRIVATE_KEY_FILE
        self.account_key_path = self.certs_dir / ACCOUNT_KEY_FILE

    def ensure_directory(self) -> bool:
        """Ensure the certs directory exists with owner-only permissions."""
        try:
            self.certs_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self.certs_dir, 0o700)
            return True
        except OSError as e:
            logger.error("[TLS-STORAGE] Failed to create certs directory: %s", e)
            return False

    def save_certificate(self, bundle: CertificateBundle) -> bool:
        """
        Save certificate chain and key to disk.

        The certificate is world-readable (0644); the key is owner-only
        (0600). A failed write leaves any previously saved pair in place.

        Returns:
            True if successful, False otherwise
        """
        if not self.ensure_directory():
            return False

        staged: list[str] = []
        old_key: Optional[bytes] = None
        try:
            # Both files are staged before either target is touched
            staged.append(_stage_file(self.key_path, bundle.key_pem, 0o600))
            staged.append(_stage_file(self.cert_path, bundle.cert_pem, 0o644))
            if self.key_path.exists():
                old_key = self.key_path.read_bytes()

            os.replace(staged[0], self.key_path)
            try:
                os.replace(staged[1], self.cert_path)
            except OSError:
                if old_key is not None:
                    write_private_file(self.key_path, old_key, 0o600)
                else:
                    self.key_path.unlink(missing_ok=True)
                raise
        except OSError as e:
            for tmp_name in staged:
                _discard(tmp_name)
            logger.error("[TLS-STORAGE] Failed to save certificate: %s", e)
            return False

        logger.info("[TLS-STORAGE] Certificate saved to %s", self.cert_path)
        return True

    def load_certificate(self) -> Optional[CertificateBundle]:
        """
        Load the saved certificate pair.

        Returns:
            The bundle, or None if absent or invalid
        """
        if not self.has_certificate():
            return None

        try:
            return load_x509_key_pair(self.cert_path, self.key_path)
        except CertificateLoadError as e:
            logger.warning("[TLS-STORAGE] Ignoring stored certificate: %s", e)
            return None

    def has_certificate(self) -> bool:
        """Check if a certificate exists."""
        return self.cert_path.exists() and self.key_path.exists()
