"""
DNS provider registry for DNS-01 ACME challenges.

Each entry declares the credential fields its provider needs and a factory
that builds a live provider client from validated credentials. Adding a
provider only means adding an entry here.

Supported providers:
- Cloudflare (API token, or legacy email + Global API Key)
- AWS Route53
- DigitalOcean
- GoDaddy
- Namecheap
- RFC 2136 dynamic updates (TSIG)
"""
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .base import (
    DNSProvider,
    DNSProviderError,
    MissingCredentialFieldError,
    UnknownDNSProviderError,
)
from .cloudflare import CloudflareDNS
from .digitalocean import DigitalOceanDNS
from .godaddy import GoDaddyDNS
from .namecheap import NamecheapDNS
from .rfc2136 import RFC2136DNS, normalize_tsig_algorithm
from .route53 import DEFAULT_REGION, Route53DNS

__all__ = [
    "DNSProvider",
    "DNSProviderError",
    "UnknownDNSProviderError",
    "MissingCredentialFieldError",
    "CloudflareDNS",
    "Route53DNS",
    "DigitalOceanDNS",
    "GoDaddyDNS",
    "NamecheapDNS",
    "RFC2136DNS",
    "Field",
    "DNSProviderInfo",
    "dns_providers",
    "get_provider_by_id",
    "create_dns_provider",
]


@dataclass(frozen=True)
class Field:
    """One credential input for a provider (rendered by the admin UI)."""

    name: str
    label: str
    type: str = "text"  # "text" or "password"
    required: bool = True
    placeholder: str = ""
    help: str = ""


@dataclass(frozen=True)
class DNSProviderInfo:
    """Catalogue entry describing a DNS provider and its credential fields."""

    id: str
    name: str
    description: str
    fields: tuple[Field, ...]

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields if f.required)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "fields": [
                {
                    "name": f.name,
                    "label": f.label,
                    "type": f.type,
                    "required": f.required,
                    "placeholder": f.placeholder,
                    "help": f.help,
                }
                for f in self.fields
            ],
        }


@dataclass(frozen=True)
class _ProviderEntry:
    info: DNSProviderInfo
    factory: Callable[[Mapping[str, str]], DNSProvider]


def _route53(creds: Mapping[str, str]) -> DNSProvider:
    return Route53DNS(
        access_key_id=creds["access_key_id"],
        secret_access_key=creds["secret_access_key"],
        region=creds.get("region") or DEFAULT_REGION,
    )


def _rfc2136(creds: Mapping[str, str]) -> DNSProvider:
    return RFC2136DNS(
        nameserver=creds["nameserver"],
        tsig_key=creds["tsig_key"],
        tsig_secret=creds["tsig_secret"],
        tsig_algorithm=normalize_tsig_algorithm(creds.get("tsig_algorithm", "")),
    )


_REGISTRY: tuple[_ProviderEntry, ...] = (
    _ProviderEntry(
        DNSProviderInfo(
            id="cloudflare",
            name="Cloudflare",
            description="Cloudflare DNS with a scoped API token",
            fields=(
                Field("api_token", "API Token", "password",
                      help="Cloudflare API token with Zone:DNS:Edit permission"),
            ),
        ),
        lambda c: CloudflareDNS(api_token=c["api_token"]),
    ),
    _ProviderEntry(
        DNSProviderInfo(
            id="cloudflare_legacy",
            name="Cloudflare (Global API Key)",
            description="Cloudflare DNS with the account email and Global API Key",
            fields=(
                Field("api_key", "Global API Key", "password",
                      help="Cloudflare Global API Key"),
                Field("email", "Account Email", placeholder="you@example.com",
                      help="Email address of the Cloudflare account"),
            ),
        ),
        lambda c: CloudflareDNS(api_key=c["api_key"], email=c["email"]),
    ),
    _ProviderEntry(
        DNSProviderInfo(
            id="route53",
            name="AWS Route 53",
            description="Amazon Route 53 hosted zones",
            fields=(
                Field("access_key_id", "Access Key ID",
                      help="IAM access key allowed to change record sets"),
                Field("secret_access_key", "Secret Access Key", "password",
                      help="IAM secret access key"),
                Field("region", "Region", required=False, placeholder=DEFAULT_REGION,
                      help="AWS region (Route 53 is global; defaults to us-east-1)"),
            ),
        ),
        _route53,
    ),
    _ProviderEntry(
        DNSProviderInfo(
            id="digitalocean",
            name="DigitalOcean",
            description="DigitalOcean Domains",
            fields=(
                Field("auth_token", "API Token", "password",
                      help="DigitalOcean personal access token with write scope"),
            ),
        ),
        lambda c: DigitalOceanDNS(auth_token=c["auth_token"]),
    ),
    _ProviderEntry(
        DNSProviderInfo(
            id="godaddy",
            name="GoDaddy",
            description="GoDaddy Domains API",
            fields=(
                Field("api_key", "API Key", help="GoDaddy production API key"),
                Field("api_secret", "API Secret", "password", help="GoDaddy production API secret"),
            ),
        ),
        lambda c: GoDaddyDNS(api_key=c["api_key"], api_secret=c["api_secret"]),
    ),
    _ProviderEntry(
        DNSProviderInfo(
            id="namecheap",
            name="Namecheap",
            description="Namecheap XML API",
            fields=(
                Field("api_user", "API User", help="Namecheap account username"),
                Field("api_key", "API Key", "password", help="Namecheap API key"),
                Field("client_ip", "Client IP", placeholder="203.0.113.10",
                      help="Public IP of this server, whitelisted in Namecheap"),
            ),
        ),
        lambda c: NamecheapDNS(api_user=c["api_user"], api_key=c["api_key"], client_ip=c["client_ip"]),
    ),
    _ProviderEntry(
        DNSProviderInfo(
            id="rfc2136",
            name="RFC 2136 (TSIG)",
            description="Dynamic DNS Updates (BIND, PowerDNS, etc.)",
            fields=(
                Field("nameserver", "Nameserver", placeholder="ns1.example.com:53",
                      help="Authoritative server accepting dynamic updates"),
                Field("tsig_key", "TSIG Key Name", help="Name of the TSIG key"),
                Field("tsig_secret", "TSIG Secret", "password", help="Base64 TSIG secret"),
                Field("tsig_algorithm", "TSIG Algorithm", required=False,
                      placeholder="hmac-sha256.", help="Defaults to hmac-sha256."),
            ),
        ),
        _rfc2136,
    ),
)

_BY_ID: dict[str, _ProviderEntry] = {entry.info.id: entry for entry in _REGISTRY}


def dns_providers() -> list[DNSProviderInfo]:
    """All supported providers, in display order."""
    return [entry.info for entry in _REGISTRY]


def get_provider_by_id(provider_id: str) -> Optional[DNSProviderInfo]:
    entry = _BY_ID.get(provider_id)
    return entry.info if entry else None


def validate_credentials(provider_id: str, credentials: Mapping[str, str]) -> dict[str, str]:
    """
    Check credentials against a provider's declared fields.

    Returns only the declared fields (unknown keys are dropped). Required
    fields are checked in declaration order; the first missing or empty one
    is reported.

    Raises:
        UnknownDNSProviderError: If provider_id is not registered
        MissingCredentialFieldError: If a required field is absent or empty
    """
    entry = _BY_ID.get(provider_id)
    if entry is None:
        raise UnknownDNSProviderError(provider_id)

    cleaned: dict[str, str] = {}
    for field in entry.info.fields:
        value = str(credentials.get(field.name) or "").strip()
        if not value:
            if field.required:
                raise MissingCredentialFieldError(provider_id, field.name)
            continue
        cleaned[field.name] = value
    return cleaned


def create_dns_provider(provider_id: str, credentials: Mapping[str, str]) -> DNSProvider:
    """
    Build a live provider client from decrypted credentials.

    Raises:
        UnknownDNSProviderError: If provider_id is not registered
        MissingCredentialFieldError: If a required field is absent or empty
        DNSProviderError: If the provider rejects the credentials
    """
    cleaned = validate_credentials(provider_id, credentials)
    return _BY_ID[provider_id].factory(cleaned)
