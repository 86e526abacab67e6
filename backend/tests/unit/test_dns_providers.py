"""
Unit tests for the DNS provider registry and provider constructors.

Tests: catalogue contents, create_dns_provider field validation, TSIG
algorithm normalization, Namecheap domain splitting.
Mocks: httpx for provider API calls (no network).
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tls.dns_providers import (
    CloudflareDNS,
    DigitalOceanDNS,
    DNSProviderError,
    GoDaddyDNS,
    MissingCredentialFieldError,
    NamecheapDNS,
    RFC2136DNS,
    Route53DNS,
    UnknownDNSProviderError,
    create_dns_provider,
    dns_providers,
    get_provider_by_id,
    validate_credentials,
)
from tls.dns_providers.base import candidate_zones, split_record_name
from tls.dns_providers.namecheap import split_domain
from tls.dns_providers.rfc2136 import normalize_tsig_algorithm, parse_nameserver


# Valid credentials for every registered provider
VALID_CREDENTIALS = {
    "cloudflare": {"api_token": "token"},
    "cloudflare_legacy": {"api_key": "key", "email": "ops@example.com"},
    "route53": {"access_key_id": "AKIA", "secret_access_key": "secret"},
    "digitalocean": {"auth_token": "do-token"},
    "godaddy": {"api_key": "key", "api_secret": "secret"},
    "namecheap": {"api_user": "user", "api_key": "key", "client_ip": "203.0.113.10"},
    "rfc2136": {
        "nameserver": "192.0.2.53",
        "tsig_key": "acme-key.",
        "tsig_secret": "c2VjcmV0c2VjcmV0c2VjcmV0",
    },
}


class TestCatalogue:
    """Tests for dns_providers() and get_provider_by_id()."""

    def test_lists_every_provider(self):
        """The catalogue covers both Cloudflare variants plus five other services."""
        ids = [p.id for p in dns_providers()]
        assert ids == list(VALID_CREDENTIALS)

    def test_lookup_by_id(self):
        """get_provider_by_id returns the entry, or None for unknown ids."""
        info = get_provider_by_id("rfc2136")
        assert info.name == "RFC 2136 (TSIG)"
        assert info.description == "Dynamic DNS Updates (BIND, PowerDNS, etc.)"
        assert get_provider_by_id("nope") is None

    def test_secret_fields_are_password_type(self):
        """Secrets render as password inputs."""
        fields = {f.name: f for f in get_provider_by_id("cloudflare").fields}
        assert fields["api_token"].type == "password"
        assert "Zone:DNS:Edit" in fields["api_token"].help

    def test_optional_fields(self):
        """Route53 region and RFC 2136 algorithm are optional."""
        assert get_provider_by_id("route53").required_fields == ("access_key_id", "secret_access_key")
        assert "tsig_algorithm" not in get_provider_by_id("rfc2136").required_fields

    def test_to_dict_shape(self):
        """to_dict exposes id, name, description and field metadata."""
        data = get_provider_by_id("godaddy").to_dict()
        assert data["id"] == "godaddy"
        assert [f["name"] for f in data["fields"]] == ["api_key", "api_secret"]
        assert set(data["fields"][0]) == {"name", "label", "type", "required", "placeholder", "help"}


class TestCreateDNSProvider:
    """Tests for create_dns_provider()."""

    @pytest.mark.parametrize("provider_id", list(VALID_CREDENTIALS))
    def test_builds_each_provider(self, provider_id):
        """Valid credentials construct a provider whose id matches the registry."""
        provider = create_dns_provider(provider_id, VALID_CREDENTIALS[provider_id])
        assert provider.provider_id == provider_id

    @pytest.mark.parametrize("provider_id,field", [
        (pid, field)
        for pid in VALID_CREDENTIALS
        for field in get_provider_by_id(pid).required_fields
    ])
    def test_missing_required_field_is_named(self, provider_id, field):
        """Omitting any single required field raises an error naming it."""
        creds = dict(VALID_CREDENTIALS[provider_id])
        del creds[field]
        with pytest.raises(MissingCredentialFieldError) as exc_info:
            create_dns_provider(provider_id, creds)
        assert exc_info.value.field == field
        assert exc_info.value.provider_id == provider_id
        assert field in str(exc_info.value)

    def test_empty_required_field_counts_as_missing(self):
        """A blank value is not accepted for a required field."""
        with pytest.raises(MissingCredentialFieldError, match="api_token"):
            create_dns_provider("cloudflare", {"api_token": "   "})

    def test_unknown_provider(self):
        """Unknown ids raise UnknownDNSProviderError."""
        with pytest.raises(UnknownDNSProviderError, match="unknown DNS provider: powerdns"):
            create_dns_provider("powerdns", {})

    def test_first_missing_field_in_declared_order(self):
        """With several fields missing, the first declared one is reported."""
        with pytest.raises(MissingCredentialFieldError) as exc_info:
            create_dns_provider("rfc2136", {})
        assert exc_info.value.field == "nameserver"

    def test_unknown_keys_are_dropped(self):
        """validate_credentials keeps only declared fields."""
        cleaned = validate_credentials("digitalocean", {"auth_token": "t", "extra": "x"})
        assert cleaned == {"auth_token": "t"}

    def test_route53_region_defaults(self):
        """Route53 defaults to us-east-1 when region is omitted."""
        provider = create_dns_provider("route53", VALID_CREDENTIALS["route53"])
        assert isinstance(provider, Route53DNS)
        assert provider.region == "us-east-1"

    def test_rfc2136_algorithm_default(self):
        """RFC 2136 uses hmac-sha256. when no algorithm is given."""
        provider = create_dns_provider("rfc2136", VALID_CREDENTIALS["rfc2136"])
        assert isinstance(provider, RFC2136DNS)
        assert provider.tsig_algorithm == "hmac-sha256."
        assert (provider.host, provider.port) == ("192.0.2.53", 53)

    def test_rfc2136_algorithm_normalized(self):
        """A given algorithm gets a trailing dot."""
        creds = dict(VALID_CREDENTIALS["rfc2136"], tsig_algorithm="HMAC-SHA512")
        provider = create_dns_provider("rfc2136", creds)
        assert provider.tsig_algorithm == "hmac-sha512."

    def test_cloudflare_variants(self):
        """Token and legacy key construct the two Cloudflare flavours."""
        token = create_dns_provider("cloudflare", VALID_CREDENTIALS["cloudflare"])
        legacy = create_dns_provider("cloudflare_legacy", VALID_CREDENTIALS["cloudflare_legacy"])
        assert isinstance(token, CloudflareDNS) and isinstance(legacy, CloudflareDNS)
        assert token._headers["Authorization"] == "Bearer token"
        assert legacy._headers["X-Auth-Email"] == "ops@example.com"


class TestHelpers:
    """Tests for name-handling helpers."""

    def test_split_record_name(self):
        """The _acme-challenge label is removed."""
        assert split_record_name("_acme-challenge.www.example.com.") == "www.example.com"

    def test_candidate_zones(self):
        """Parent zones are listed longest first, excluding the bare TLD."""
        assert candidate_zones("a.b.example.com") == ["a.b.example.com", "b.example.com", "example.com"]

    @pytest.mark.parametrize("name,expected", [
        ("_acme-challenge.example.com", ("_acme-challenge", "example", "com")),
        ("_acme-challenge.www.example.co.uk", ("_acme-challenge.www", "example", "co.uk")),
        ("example.com", ("", "example", "com")),
    ])
    def test_namecheap_split_domain(self, name, expected):
        """Names split into host, SLD and TLD (multi-label TLDs aware)."""
        assert split_domain(name) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("", "hmac-sha256."),
        ("hmac-sha256", "hmac-sha256."),
        ("hmac-md5.sig-alg.reg.int.", "hmac-md5.sig-alg.reg.int."),
    ])
    def test_normalize_tsig_algorithm(self, raw, expected):
        """Algorithms get a trailing dot and a default."""
        assert normalize_tsig_algorithm(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("ns1.example.com", ("ns1.example.com", 53)),
        ("ns1.example.com:5353", ("ns1.example.com", 5353)),
        ("[2001:db8::53]:53", ("2001:db8::53", 53)),
        ("2001:db8::53", ("2001:db8::53", 53)),
    ])
    def test_parse_nameserver(self, raw, expected):
        """Nameserver strings parse to host and port."""
        assert parse_nameserver(raw) == expected

    def test_parse_nameserver_bad_port(self):
        """A non-numeric port is rejected."""
        with pytest.raises(DNSProviderError):
            parse_nameserver("ns1.example.com:dns")


def _mock_httpx_client(responses: dict):
    """Patchable AsyncClient returning canned responses per (method, path)."""
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)

    def _make(method):
        async def _call(path, *args, **kwargs):
            return responses[(method, path)]
        return _call

    for method in ("get", "post", "patch", "delete"):
        setattr(client, method, AsyncMock(side_effect=_make(method)))
    return client


def _response(status_code: int, json_data=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_data or {}
    resp.text = ""
    return resp


class TestDigitalOcean:
    """DigitalOcean provider against a mocked API."""

    @pytest.mark.asyncio
    async def test_create_and_delete_txt_record(self):
        """Records are created in the managed parent domain and deleted by id."""
        client = _mock_httpx_client({
            ("get", "/domains/example.com"): _response(200, {"domain": {"name": "example.com"}}),
            ("post", "/domains/example.com/records"): _response(201, {"domain_record": {"id": 42}}),
            ("delete", "/domains/example.com/records/42"): _response(204),
        })
        provider = DigitalOceanDNS(auth_token="t")
        with patch.object(provider, "_client", return_value=client):
            record_id = await provider.create_txt_record("_acme-challenge.example.com", "value")
            assert record_id == "42"
            assert await provider.delete_txt_record(record_id) is True

        body = client.post.call_args.kwargs["json"]
        assert body["name"] == "_acme-challenge"
        assert body["ttl"] >= 30


class TestGoDaddy:
    """GoDaddy provider against a mocked API."""

    @pytest.mark.asyncio
    async def test_record_id_encodes_zone_and_name(self):
        """The returned id is zone/relative-name and deletion uses it."""
        client = _mock_httpx_client({
            ("get", "/domains/www.example.com"): _response(404),
            ("get", "/domains/example.com"): _response(200),
            ("patch", "/domains/example.com/records"): _response(200),
            ("delete", "/domains/example.com/records/TXT/_acme-challenge.www"): _response(204),
        })
        provider = GoDaddyDNS(api_key="k", api_secret="s")
        with patch.object(provider, "_client", return_value=client):
            record_id = await provider.create_txt_record("_acme-challenge.www.example.com", "v")
            assert record_id == "example.com/_acme-challenge.www"
            assert await provider.delete_txt_record(record_id) is True

        assert client.patch.call_args.kwargs["json"][0]["ttl"] == 600


class TestNamecheap:
    """Namecheap provider keeps existing hosts when adding records."""

    @pytest.mark.asyncio
    async def test_create_preserves_existing_hosts(self):
        """setHosts receives the existing records plus the new TXT record."""
        provider = NamecheapDNS(api_user="u", api_key="k", client_ip="203.0.113.10")
        existing = [{"name": "@", "type": "A", "address": "192.0.2.1", "mx_pref": "10", "ttl": "1800"}]
        with patch.object(provider, "_get_hosts", AsyncMock(return_value=existing)), \
             patch.object(provider, "_set_hosts", AsyncMock()) as mock_set:
            await provider.create_txt_record("_acme-challenge.example.com", "v")

        sld, tld, hosts = mock_set.call_args.args
        assert (sld, tld) == ("example", "com")
        assert hosts[0]["type"] == "A"
        assert hosts[1] == {"name": "_acme-challenge", "type": "TXT", "address": "v", "mx_pref": "10", "ttl": "60"}
