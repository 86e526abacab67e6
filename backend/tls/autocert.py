"""
Self-renewing HTTP-01 certificate manager.

Keeps one certificate per whitelisted domain, cached under
``<data_dir>/certs/<domain>``. A background loop obtains missing
certificates and renews those inside the expiry window, handing every new
certificate to the TLS manager. Handshakes only ever read what is already
in memory.
"""
import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from .acme_client import ACMEClient, load_or_create_account_key
from .challenges import HTTP01Solver, HTTPChallengeStore
from .storage import ACCOUNT_KEY_FILE, CertificateBundle, CertificateStorage


logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = 12 * 3600  # seconds
RETRY_INTERVAL = 3600  # after a failed attempt


class AutocertManager:
    """
    Obtains and renews HTTP-01 certificates for a fixed host whitelist.

    Args:
        domains: Host whitelist; certificates are only issued for these
        email: ACME account contact
        staging: Use the sandbox ACME directory
        certs_dir: Cache root (``<data_dir>/certs``)
        store: Challenge store served by the manager's HTTPS handler
        on_update: Called with all current certificates after each change
    """

    def __init__(
        self,
        domains: list[str],
        email: str,
        staging: bool,
        certs_dir: Path,
        store: HTTPChallengeStore,
        on_update: Optional[Callable[[tuple[CertificateBundle, ...]], None]] = None,
    ):
        self.domains = [d.lower() for d in domains]
        self.email = email
        self.staging = staging
        self.certs_dir = Path(certs_dir)
        self.store = store
        self.on_update = on_update

        self._certs: dict[str, CertificateBundle] = {}
        self._client: Optional[ACMEClient] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def _storage(self, domain: str) -> CertificateStorage:
        return CertificateStorage(self.certs_dir / domain)

    def host_allowed(self, server_name: str) -> bool:
        return server_name.lower().rstrip(".") in self.domains

    def load_cached(self) -> int:
        """Load cached certificates from disk. Returns how many were found."""
        for domain in self.domains:
            bundle = self._storage(domain).load_certificate()
            if bundle is not None:
                self._certs[domain] = bundle
        if self._certs:
            logger.info("[TLS-AUTOCERT] Loaded %d cached certificate(s)", len(self._certs))
        return len(self._certs)

    def certificates(self) -> tuple[CertificateBundle, ...]:
        """Current certificates in whitelist order."""
        return tuple(self._certs[d] for d in self.domains if d in self._certs)

    def get_certificate(self, server_name: Optional[str]) -> Optional[CertificateBundle]:
        """Certificate for an SNI name; None for names outside the whitelist."""
        if not server_name:
            return next(iter(self.certificates()), None)
        if not self.host_allowed(server_name):
            return None
        return self._certs.get(server_name.lower().rstrip("."))

    def due_for_renewal(self) -> list[str]:
        """Whitelisted domains with no certificate or one inside the expiry window."""
        return [
            d for d in self.domains
            if d not in self._certs or self._certs[d].cert_info().is_expiring
        ]

    def _get_client(self) -> ACMEClient:
        if self._client is None:
            self.certs_dir.mkdir(parents=True, exist_ok=True)
            account_key = load_or_create_account_key(self.certs_dir / ACCOUNT_KEY_FILE)
            self._client = ACMEClient(email=self.email, account_key=account_key, staging=self.staging)
        return self._client

    async def obtain(self, domain: str) -> CertificateBundle:
        """Issue a certificate for one whitelisted domain and cache it."""
        if domain not in self.domains:
            raise ValueError(f"{domain} is not in the host whitelist")

        bundle = await self._get_client().obtain_certificate([domain], HTTP01Solver(self.store))
        self._storage(domain).save_certificate(bundle)
        self._certs[domain] = bundle
        if self.on_update:
            self.on_update(self.certificates())
        return bundle

    async def renew_due(self) -> int:
        """
        Obtain every due certificate.

        Failures are logged per domain and do not stop the others.

        Returns:
            Number of failed domains
        """
        failed = 0
        for domain in self.due_for_renewal():
            try:
                logger.info("[TLS-AUTOCERT] Obtaining certificate for %s", domain)
                await self.obtain(domain)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failed += 1
                logger.error("[TLS-AUTOCERT] Failed to obtain certificate for %s: %s", domain, e)
        return failed

    async def start(self, check_interval: int = DEFAULT_CHECK_INTERVAL) -> None:
        """Start the background obtain/renew loop."""
        if self._running:
            logger.warning("[TLS-AUTOCERT] Autocert loop already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(check_interval))
        logger.info("[TLS-AUTOCERT] Autocert loop started for %s", ", ".join(self.domains))

    async def stop(self) -> None:
        """Stop the background loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[TLS-AUTOCERT] Autocert loop stopped")

    async def _run_loop(self, check_interval: int) -> None:
        while self._running:
            failed = await self.renew_due()
            await asyncio.sleep(RETRY_INTERVAL if failed else check_interval)
