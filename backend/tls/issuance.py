"""
DNS-01 issuance engine.

Turns the ``dns01`` configuration block into a live DNS provider, binds it
to an ACME client and obtains (or reuses) the certificate stored in
``<data_dir>/certs``.
"""
import logging
from pathlib import Path
from typing import Optional

from .acme_client import ACMEClient, load_or_create_account_key
from .challenges import DNS01Solver
from .dns_providers import DNSProvider, create_dns_provider
from .errors import (
    CertificateObtainError,
    DNS01ConfigError,
    MissingCredentialsError,
    MissingDNSProviderError,
    MissingSecretKeyError,
)
from .settings import SSLConfig
from .storage import CertificateBundle, CertificateStorage
from .vault import decrypt_credentials


logger = logging.getLogger(__name__)


def build_dns_provider(ssl_config: SSLConfig, secret_key: Optional[str]) -> DNSProvider:
    """
    Resolve the configured DNS provider.

    Checks, in order: provider set, credentials set, secret key available,
    credentials decrypt, provider registered, provider accepts credentials.
    Each failure raises its own exception type.
    """
    dns01 = ssl_config.dns01
    if not dns01.provider:
        raise MissingDNSProviderError()
    if not dns01.credentials_encrypted:
        raise MissingCredentialsError()
    if not secret_key:
        raise MissingSecretKeyError()

    credentials = decrypt_credentials(dns01.credentials_encrypted, secret_key)
    return create_dns_provider(dns01.provider, credentials)


class DNS01Issuer:
    """
    Obtains and renews the DNS-01 certificate.

    Build with ``await DNS01Issuer.create(...)``, which performs every
    precondition check and registers the ACME account.
    """

    def __init__(
        self,
        client: ACMEClient,
        solver: DNS01Solver,
        storage: CertificateStorage,
        domains: list[str],
    ):
        self.client = client
        self.solver = solver
        self.storage = storage
        self.domains = domains

    @classmethod
    async def create(
        cls,
        ssl_config: SSLConfig,
        certs_dir: Path,
        secret_key: Optional[str],
    ) -> "DNS01Issuer":
        provider = build_dns_provider(ssl_config, secret_key)

        domains = ssl_config.effective_domains()
        if not domains:
            raise DNS01ConfigError("letsencrypt.domains is required for DNS-01 challenge")

        storage = CertificateStorage(certs_dir)
        storage.ensure_directory()
        account_key = load_or_create_account_key(storage.account_key_path)

        le = ssl_config.letsencrypt
        client = ACMEClient(email=le.email, account_key=account_key, staging=le.staging)
        await client.register()

        logger.info(
            "[TLS-DNS01] DNS-01 issuer ready (provider=%s, staging=%s, domains=%s)",
            provider.provider_id, le.staging, ", ".join(domains),
        )
        return cls(client, DNS01Solver(provider), storage, domains)

    def stored_certificate(self) -> Optional[CertificateBundle]:
        """The saved certificate, if it is still usable for the configured domains."""
        bundle = self.storage.load_certificate()
        if bundle is None:
            return None

        missing = set(self.domains) - set(bundle.dns_names())
        if missing:
            logger.info("[TLS-DNS01] Stored certificate does not cover %s", ", ".join(sorted(missing)))
            return None
        if bundle.cert_info().is_expiring:
            logger.info("[TLS-DNS01] Stored certificate expires %s, renewing", bundle.not_after.isoformat())
            return None
        return bundle

    async def obtain(self) -> CertificateBundle:
        """
        Return a valid certificate, issuing a new one only when needed.

        A stored certificate with 30 or more days left is reused without
        network access. A new certificate is saved before it is returned.

        Raises:
            CertificateObtainError: If issuance or saving fails
        """
        bundle = self.stored_certificate()
        if bundle is not None:
            logger.info("[TLS-DNS01] Reusing stored certificate (expires %s)", bundle.not_after.isoformat())
            return bundle

        try:
            bundle = await self.client.obtain_certificate(self.domains, self.solver)
        except CertificateObtainError:
            raise
        except Exception as e:
            raise CertificateObtainError(f"failed to obtain certificate: {e}") from e

        if not self.storage.save_certificate(bundle):
            raise CertificateObtainError(f"failed to save certificate to {self.storage.certs_dir}")
        return bundle
