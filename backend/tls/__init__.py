"""
TLS certificate lifecycle management.

Provides:
- Strategy selection between manual certificates, HTTP-01 and DNS-01
  Let's Encrypt issuance (with DNS-01 falling back to HTTP-01)
- Live TLS material behind a reader/writer lock
- Encrypted DNS provider credentials
- DNS provider registry
- Scheduled renewal and the HTTP->HTTPS redirect listener
"""

from .acme_client import ACMEChallengeError, ACMEClient, ACMEError, ACMEOrderError
from .dns_providers import (
    DNSProvider,
    DNSProviderError,
    DNSProviderInfo,
    Field,
    MissingCredentialFieldError,
    UnknownDNSProviderError,
    create_dns_provider,
    dns_providers,
    get_provider_by_id,
)
from .errors import (
    CertificateLoadError,
    CertificateObtainError,
    DNS01ConfigError,
    MissingCredentialsError,
    MissingDNSProviderError,
    MissingSecretKeyError,
    NoCertificateError,
    SSLConfigError,
    TLSError,
)
from .manager import CIPHER_SUITES, Strategy, TLSConfig, TLSManager
from .redirect import HTTPSRedirectApp, start_https_redirect
from .renewal import CertificateRenewalManager
from .settings import (
    DNS01Config,
    LetsEncryptConfig,
    SSLConfig,
    load_ssl_config,
    read_ssl_config,
    save_ssl_config,
    validated_at_now,
)
from .storage import CertificateBundle, CertInfo, load_x509_key_pair
from .vault import CredentialDecryptionError, decrypt_credentials, encrypt_credentials

__all__ = [
    "TLSManager",
    "TLSConfig",
    "Strategy",
    "CIPHER_SUITES",
    "SSLConfig",
    "LetsEncryptConfig",
    "DNS01Config",
    "load_ssl_config",
    "read_ssl_config",
    "save_ssl_config",
    "validated_at_now",
    "CertificateBundle",
    "CertInfo",
    "load_x509_key_pair",
    "encrypt_credentials",
    "decrypt_credentials",
    "dns_providers",
    "get_provider_by_id",
    "create_dns_provider",
    "DNSProvider",
    "DNSProviderInfo",
    "Field",
    "ACMEClient",
    "HTTPSRedirectApp",
    "start_https_redirect",
    "CertificateRenewalManager",
    "TLSError",
    "DNS01ConfigError",
    "MissingDNSProviderError",
    "MissingCredentialsError",
    "MissingSecretKeyError",
    "DNSProviderError",
    "UnknownDNSProviderError",
    "MissingCredentialFieldError",
    "CredentialDecryptionError",
    "ACMEError",
    "ACMEChallengeError",
    "ACMEOrderError",
    "CertificateObtainError",
    "NoCertificateError",
    "CertificateLoadError",
    "SSLConfigError",
]
