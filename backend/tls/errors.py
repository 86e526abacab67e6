"""
Exceptions shared across the TLS certificate lifecycle.
"""


class TLSError(Exception):
    """Base class for TLS certificate management errors."""

    pass


class DNS01ConfigError(TLSError):
    """DNS-01 strategy cannot be initialized from the current configuration."""

    pass


class MissingDNSProviderError(DNS01ConfigError):
    """No DNS provider is configured."""

    def __init__(self):
        super().__init__("dns01.provider is required for DNS-01 challenge")


class MissingCredentialsError(DNS01ConfigError):
    """No encrypted provider credentials are configured."""

    def __init__(self):
        super().__init__("dns01.credentials_encrypted is required for DNS-01 challenge")


class MissingSecretKeyError(DNS01ConfigError):
    """No password is available to decrypt the provider credentials."""

    def __init__(self):
        super().__init__("secret key is required for DNS-01 credential decryption")


class NoCertificateError(TLSError):
    """No certificate is currently installed."""

    def __init__(self, message: str = "no certificate loaded"):
        super().__init__(message)


class CertificateLoadError(TLSError):
    """A certificate/key pair is missing, unparsable, or mismatched."""

    pass


class CertificateObtainError(TLSError):
    """An obtain or renew cycle failed."""

    pass


class SSLConfigError(TLSError):
    """The configured ssl block exists but cannot be read or validated."""

    pass
