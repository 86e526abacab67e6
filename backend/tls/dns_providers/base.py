"""
Base DNS provider interface for ACME DNS-01 challenges.
"""
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import TLSError


class DNSProviderError(TLSError):
    """Error from a DNS provider operation."""

    pass


class UnknownDNSProviderError(DNSProviderError):
    """The provider id does not match any registry entry."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"unknown DNS provider: {provider_id}")


class MissingCredentialFieldError(DNSProviderError):
    """A required credential field is absent or empty."""

    def __init__(self, provider_id: str, field: str):
        self.provider_id = provider_id
        self.field = field
        super().__init__(f"{provider_id}: {field} is required")


def split_record_name(name: str) -> str:
    """Domain part of a challenge record name (_acme-challenge.x.com -> x.com)."""
    name = name.rstrip(".")
    if name.startswith("_acme-challenge."):
        return name[len("_acme-challenge."):]
    return name


def candidate_zones(domain: str) -> list[str]:
    """Progressively shorter parent zones of a domain, longest first."""
    parts = domain.rstrip(".").split(".")
    return [".".join(parts[i:]) for i in range(len(parts) - 1)]


class DNSProvider(ABC):
    """
    Abstract base class for DNS providers.

    Implementations must provide methods to create and delete TXT records
    for ACME DNS-01 challenges.
    """

    # Registry id, set by each implementation
    provider_id: str = ""

    @abstractmethod
    async def create_txt_record(
        self,
        name: str,
        value: str,
        ttl: int = 60,
    ) -> str:
        """
        Create a TXT record for DNS-01 challenge.

        Args:
            name: The record name (e.g., "_acme-challenge.example.com")
            value: The record value (base64url-encoded challenge response)
            ttl: Time-to-live in seconds

        Returns:
            Record ID for later deletion

        Raises:
            DNSProviderError: If creation fails
        """
        pass

    @abstractmethod
    async def delete_txt_record(self, record_id: str) -> bool:
        """
        Delete a TXT record after challenge completion.

        Args:
            record_id: The record ID returned from create_txt_record

        Returns:
            True if deletion was successful

        Raises:
            DNSProviderError: If deletion fails
        """
        pass

    @abstractmethod
    async def get_zone_id(self, domain: str) -> Optional[str]:
        """
        Get the zone ID for a domain.

        Args:
            domain: The domain name

        Returns:
            Zone ID or None if not found
        """
        pass

    @abstractmethod
    async def verify_credentials(self) -> tuple[bool, Optional[str]]:
        """
        Verify that the provider credentials are valid.

        Returns:
            Tuple of (success, error_message)
        """
        pass

    @property
    def propagation_timeout(self) -> int:
        """Seconds to wait for a new record to become publicly visible."""
        return 120

    @property
    def polling_interval(self) -> int:
        """Seconds between propagation checks."""
        return 5
