"""
TLS manager.

Chooses how the server gets its certificate and owns the live TLS
material. The strategy is picked once by ``initialize()``:

    letsencrypt.enabled, challenge dns-01  -> DNS-01 (falls back to HTTP-01)
    letsencrypt.enabled, otherwise         -> HTTP-01 (autocert)
    cert_file + key_file                   -> manual
    anything else                          -> none (plain HTTP)

The current ``TLSConfig`` is an immutable value behind a reader/writer
lock. Handshakes (SNI callbacks on any thread) and status requests take
the read side; installs and reloads replace the whole value under the
write side after all I/O is done.
"""
import asyncio
import logging
import os
import ssl
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

from starlette.types import ASGIApp

from .autocert import AutocertManager
from .challenges import ACMEChallengeMiddleware, HTTPChallengeStore
from .errors import CertificateLoadError, CertificateObtainError, NoCertificateError
from .issuance import DNS01Issuer
from .settings import SSLConfig
from .storage import CertificateBundle, CertInfo, load_x509_key_pair


logger = logging.getLogger(__name__)

# ECDHE key exchange with AEAD ciphers only (TLS 1.2 names; TLS 1.3 suites
# are always enabled by OpenSSL)
CIPHER_SUITES = (
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
    "ECDHE-RSA-CHACHA20-POLY1305",
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
)


class Strategy(str, Enum):
    NONE = "none"
    MANUAL = "manual"
    HTTP01 = "http-01"
    DNS01 = "dns-01"


@dataclass(frozen=True)
class TLSConfig:
    """Negotiation parameters plus the certificates currently served."""

    certificates: tuple[CertificateBundle, ...] = ()
    min_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2
    cipher_suites: tuple[str, ...] = CIPHER_SUITES
    prefer_server_ciphers: bool = True
    # Dynamic certificate source keyed by SNI name (HTTP-01 strategy)
    get_certificate: Optional[Callable[[Optional[str]], Optional[CertificateBundle]]] = field(
        default=None, compare=False
    )

    def select(self, server_name: Optional[str]) -> Optional[CertificateBundle]:
        """Certificate to present for an SNI name."""
        if self.get_certificate is not None:
            bundle = self.get_certificate(server_name)
            if bundle is not None:
                return bundle
        if server_name:
            name = server_name.lower().rstrip(".")
            for bundle in self.certificates:
                if _name_matches(name, bundle.dns_names()):
                    return bundle
        return self.certificates[0] if self.certificates else None


def _name_matches(name: str, patterns: list[str]) -> bool:
    for pattern in patterns:
        pattern = pattern.lower()
        if pattern == name:
            return True
        if pattern.startswith("*.") and name.count(".") == pattern.count(".") and name.endswith(pattern[1:]):
            return True
    return False


class RWLock:
    """Many readers or one writer; writers are not starved by new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _new_server_context(config: TLSConfig) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = config.min_version
    ctx.set_ciphers(":".join(config.cipher_suites))
    if config.prefer_server_ciphers:
        ctx.options |= ssl.OP_CIPHER_SERVER_PREFERENCE
    return ctx


def build_ssl_context(bundle: CertificateBundle, config: TLSConfig) -> ssl.SSLContext:
    """
    SSLContext serving one certificate.

    The ssl module only loads key material from files, so the PEMs go
    through a private temporary directory that is removed immediately.
    """
    ctx = _new_server_context(config)
    with tempfile.TemporaryDirectory(prefix="tls-") as tmp:
        cert_path = os.path.join(tmp, "cert.pem")
        key_path = os.path.join(tmp, "key.pem")
        with open(cert_path, "wb") as f:
            f.write(bundle.cert_pem)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(bundle.key_pem)
        ctx.load_cert_chain(cert_path, key_path)
    return ctx


@dataclass(frozen=True)
class _State:
    config: TLSConfig
    contexts: dict = field(default_factory=dict)  # CertificateBundle -> SSLContext


class TLSManager:
    """
    Owns certificate selection, issuance and the live TLS material.

    Usage:
        manager = TLSManager(ssl_config, data_dir, secret_key)
        await manager.initialize()
        if manager.is_enabled():
            ctx = manager.create_ssl_context()
    """

    def __init__(self, ssl_config: SSLConfig, data_dir: str | Path, secret_key: Optional[str] = None):
        self.config = ssl_config.model_copy(deep=True)
        self.data_dir = Path(data_dir)
        self.certs_dir = self.data_dir / "certs"
        self._secret_key = secret_key

        self._lock = RWLock()
        self._state: Optional[_State] = None
        self._renew_lock = asyncio.Lock()

        self.strategy = Strategy.NONE
        self.fallback_reason: Optional[str] = None
        self.challenge_store = HTTPChallengeStore()
        # At most one of these is set
        self.issuer: Optional[DNS01Issuer] = None
        self.autocert: Optional[AutocertManager] = None

    def __repr__(self) -> str:
        return f"<TLSManager strategy={self.strategy.value} data_dir={self.data_dir}>"

    # ------------------------------------------------------------------
    # Strategy selection

    async def initialize(self) -> None:
        """Select and initialize a strategy. Never raises for config problems."""
        le = self.config.letsencrypt

        if not self.config.enabled:
            logger.info("[TLS] TLS disabled in configuration")
            return

        if le.enabled:
            if le.challenge == "dns-01":
                try:
                    await self._init_dns01()
                    return
                except Exception as e:
                    self._fallback_to_http01(e)
            self._init_http01()
            return

        if self.config.has_manual_certificates():
            self._init_manual()
            return

        logger.info("[TLS] No certificate source configured, serving plain HTTP")

    async def _init_dns01(self) -> None:
        logger.info("[TLS] Initializing DNS-01 strategy")
        issuer = await DNS01Issuer.create(self.config, self.certs_dir, self._secret_key)
        bundle = await issuer.obtain()
        self._install(TLSConfig(certificates=(bundle,)))
        self.issuer = issuer
        self.strategy = Strategy.DNS01
        logger.info("[TLS] DNS-01 strategy active for %s", ", ".join(issuer.domains))

    def _fallback_to_http01(self, cause: Exception) -> None:
        self.fallback_reason = f"{type(cause).__name__}: {cause}"
        logger.warning("[TLS] DNS-01 initialization failed, falling back to HTTP-01: %s", self.fallback_reason)

    def _init_http01(self) -> None:
        le = self.config.letsencrypt
        domains = self.config.effective_domains()
        if le.challenge == "tls-alpn-01":
            logger.info("[TLS] tls-alpn-01 requested, serving challenges over HTTP-01")

        self.autocert = AutocertManager(
            domains=domains,
            email=le.email,
            staging=le.staging,
            certs_dir=self.certs_dir,
            store=self.challenge_store,
            on_update=self._on_autocert_update,
        )
        self.autocert.load_cached()
        self._install(TLSConfig(
            certificates=self.autocert.certificates(),
            get_certificate=self.autocert.get_certificate,
        ))
        self.strategy = Strategy.HTTP01
        logger.info("[TLS] HTTP-01 strategy active for %s", ", ".join(domains) or "(no domains)")

    def _on_autocert_update(self, certificates: tuple[CertificateBundle, ...]) -> None:
        self._install(TLSConfig(
            certificates=certificates,
            get_certificate=self.autocert.get_certificate if self.autocert else None,
        ))

    def _init_manual(self) -> None:
        try:
            bundle = load_x509_key_pair(self.config.cert_file, self.config.key_file)
            self._install(TLSConfig(certificates=(bundle,)))
        except (CertificateLoadError, ssl.SSLError) as e:
            logger.error("[TLS] Failed to load certificate %s: %s", self.config.cert_file, e)
            return
        self.strategy = Strategy.MANUAL
        logger.info("[TLS] Loaded certificate from %s", self.config.cert_file)

    # ------------------------------------------------------------------
    # Live material

    def _install(self, config: TLSConfig) -> None:
        """Build contexts, then swap the state under the write lock."""
        contexts = {bundle: build_ssl_context(bundle, config) for bundle in config.certificates}
        state = _State(config=config, contexts=contexts)
        with self._lock.write():
            self._state = state

    def _current(self) -> Optional[_State]:
        with self._lock.read():
            return self._state

    def is_enabled(self) -> bool:
        """True when TLS is enabled in config and TLS material is loaded."""
        return self.config.enabled and self._current() is not None

    def get_tls_config(self) -> Optional[TLSConfig]:
        state = self._current()
        return state.config if state else None

    def create_ssl_context(self) -> ssl.SSLContext:
        """
        Listener SSLContext that follows certificate swaps.

        The SNI callback switches each connection to the context of the
        certificate selected from the state current at handshake time.
        """
        state = self._current()
        if state is None:
            raise NoCertificateError("TLS is not initialized")

        default = state.config.select(None)
        ctx = state.contexts.get(default) if default else None
        if ctx is None:
            # HTTP-01 before the first certificate: handshakes fail until one arrives
            ctx = _new_server_context(state.config)
        ctx.sni_callback = self._sni_callback
        return ctx

    def _sni_callback(self, ssl_obj, server_name: Optional[str], initial_context: ssl.SSLContext):
        state = self._current()
        if state is None:
            return None
        bundle = state.config.select(server_name)
        ctx = state.contexts.get(bundle) if bundle else None
        if ctx is not None and ctx is not initial_context:
            ssl_obj.context = ctx
        return None

    def get_https_handler(self, fallback: ASGIApp) -> ASGIApp:
        """Wrap ``fallback`` with the ACME challenge responder (HTTP-01 only)."""
        if self.strategy == Strategy.HTTP01:
            return ACMEChallengeMiddleware(fallback, self.challenge_store)
        return fallback

    def get_cert_info(self) -> CertInfo:
        """
        Info about the primary installed certificate.

        Raises:
            NoCertificateError: If no certificate is installed
        """
        state = self._current()
        if state is None or not state.config.certificates:
            raise NoCertificateError()
        return state.config.certificates[0].cert_info()

    # ------------------------------------------------------------------
    # Reload / renew

    def reload_certificates(self) -> None:
        """
        Re-read the manual certificate files and swap them in.

        No-op while an ACME strategy manages the certificate.

        Raises:
            CertificateLoadError: If no files are configured or they are invalid
        """
        if self.config.letsencrypt.enabled:
            return
        if not self.config.has_manual_certificates():
            raise CertificateLoadError("no certificate files configured")

        bundle = load_x509_key_pair(self.config.cert_file, self.config.key_file)
        try:
            self._install(TLSConfig(certificates=(bundle,)))
        except ssl.SSLError as e:
            raise CertificateLoadError(f"Certificate rejected by TLS library: {e}")
        self.strategy = Strategy.MANUAL
        logger.info("[TLS] Reloaded certificate from %s", self.config.cert_file)

    async def renew_certificate_dns01(self, timeout: Optional[float] = None) -> bool:
        """
        Renew the DNS-01 certificate if it is missing or expiring.

        No-op outside the DNS-01 strategy. Safe to call repeatedly; only one
        renewal runs at a time. Cancellation or timeout installs nothing.

        Returns:
            True if a new certificate was installed

        Raises:
            CertificateObtainError: If issuance fails or times out
        """
        if self.strategy != Strategy.DNS01 or self.issuer is None:
            return False

        async with self._renew_lock:
            try:
                if not self.get_cert_info().is_expiring:
                    return False
            except NoCertificateError:
                pass

            logger.info("[TLS-RENEWAL] Renewing DNS-01 certificate")
            try:
                bundle = await asyncio.wait_for(self.issuer.obtain(), timeout)
            except asyncio.TimeoutError:
                raise CertificateObtainError(f"certificate renewal timed out after {timeout}s")

            self._install(TLSConfig(certificates=(bundle,)))
            logger.info("[TLS-RENEWAL] Installed certificate valid until %s", bundle.not_after.isoformat())
            return True

    # ------------------------------------------------------------------
    # Background work

    async def start(self) -> None:
        """Start the HTTP-01 obtain/renew loop, if that strategy is active."""
        if self.autocert is not None:
            await self.autocert.start()

    async def stop(self) -> None:
        if self.autocert is not None:
            await self.autocert.stop()

    def status(self) -> dict:
        """Operator-facing summary."""
        try:
            cert = self.get_cert_info().to_dict()
        except NoCertificateError:
            cert = None
        return {
            "enabled": self.is_enabled(),
            "strategy": self.strategy.value,
            "challenge": self.config.letsencrypt.challenge if self.config.letsencrypt.enabled else None,
            "staging": self.config.letsencrypt.staging,
            "domains": self.config.effective_domains() if self.config.letsencrypt.enabled else [],
            "fallback_reason": self.fallback_reason,
            "certificate": cert,
        }
