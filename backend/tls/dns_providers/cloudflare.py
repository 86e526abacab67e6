"""
Cloudflare DNS provider for ACME DNS-01 challenges.

Supports scoped API tokens and the legacy Global API Key + account email.
"""
import logging
import re
from typing import Optional

import httpx

from .base import DNSProvider, DNSProviderError, candidate_zones, split_record_name


logger = logging.getLogger(__name__)

# Cloudflare zone/record IDs are hex strings
_CF_ID_RE = re.compile(r"^[a-f0-9]{32}$")


def _validate_cf_id(value: str, label: str) -> str:
    """Validate a Cloudflare ID (zone_id or record_id) is a 32-char hex string."""
    if not _CF_ID_RE.match(value):
        raise DNSProviderError(f"Invalid {label} format")
    return value


class CloudflareDNS(DNSProvider):
    """
    Cloudflare DNS API implementation for ACME DNS-01 challenges.

    Authenticate with either an API token with Zone:DNS:Edit permission,
    or (legacy) the account email plus Global API Key.
    """

    BASE_URL = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        api_token: str = "",
        email: str = "",
        api_key: str = "",
        zone_id: str = "",
    ):
        if api_token:
            self.provider_id = "cloudflare"
            self._headers = {"Authorization": f"Bearer {api_token}"}
        elif email and api_key:
            self.provider_id = "cloudflare_legacy"
            self._headers = {"X-Auth-Email": email, "X-Auth-Key": api_key}
        else:
            raise DNSProviderError("cloudflare: api_token or email and api_key are required")

        self._headers["Content-Type"] = "application/json"
        self.zone_id = zone_id
        # record_id -> zone_id, for cleanup
        self._record_zones: dict[str, str] = {}

    def _client(self) -> httpx.AsyncClient:
        """Create an httpx client with fixed base URL."""
        return httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers=self._headers,
            timeout=30.0,
        )

    def _parse_response(self, data: dict) -> dict:
        """Check Cloudflare response for errors."""
        if not data.get("success", False):
            errors = data.get("errors", [])
            error_msg = "; ".join(
                e.get("message", "Unknown error") for e in errors
            )
            raise DNSProviderError(f"Cloudflare API error: {error_msg}")
        return data

    async def verify_credentials(self) -> tuple[bool, Optional[str]]:
        """Verify that the token (or legacy key) is valid."""
        path = "/user/tokens/verify" if self.provider_id == "cloudflare" else "/user"
        try:
            async with self._client() as client:
                resp = await client.get(path)
                self._parse_response(resp.json())
            return True, None
        except DNSProviderError as e:
            return False, str(e)
        except Exception as e:
            return False, f"Connection error: {e}"

    async def get_zone_id(self, domain: str) -> Optional[str]:
        """
        Get the zone ID for a domain.

        Cloudflare zones are typically the apex domain, so for
        sub.example.com progressively shorter names are tried.
        """
        if self.zone_id:
            return self.zone_id

        try:
            async with self._client() as client:
                for zone_name in candidate_zones(domain):
                    resp = await client.get("/zones", params={"name": zone_name})
                    data = self._parse_response(resp.json())

                    zones = data.get("result", [])
                    if zones:
                        zone_id = zones[0]["id"]
                        logger.info("[TLS-CLOUDFLARE] Found Cloudflare zone: %s (%s)", zone_name, zone_id)
                        return zone_id

            return None

        except DNSProviderError:
            raise
        except Exception as e:
            raise DNSProviderError(f"Failed to get zone ID: {e}")

    async def create_txt_record(
        self,
        name: str,
        value: str,
        ttl: int = 60,
    ) -> str:
        """Create a TXT record and return its record ID."""
        domain = split_record_name(name)
        zone_id = await self.get_zone_id(domain)

        if not zone_id:
            raise DNSProviderError(f"Could not find zone for domain: {domain}")

        # Validate zone_id format before using in URL path
        safe_zone_id = _validate_cf_id(zone_id, "zone_id")

        # Cloudflare minimum TTL is 60 seconds (or 1 for automatic)
        ttl = max(60, ttl)

        try:
            path = f"/zones/{safe_zone_id}/dns_records"
            async with self._client() as client:
                resp = await client.post(path, json={
                    "type": "TXT",
                    "name": name.rstrip("."),
                    "content": value,
                    "ttl": ttl,
                })
                data = self._parse_response(resp.json())

            record_id = data["result"]["id"]
            self._record_zones[record_id] = safe_zone_id
            logger.info("[TLS-CLOUDFLARE] Created Cloudflare TXT record: %s (%s)", name, record_id)
            return record_id

        except DNSProviderError:
            raise
        except Exception as e:
            raise DNSProviderError(f"Failed to create TXT record: {e}")

    async def delete_txt_record(self, record_id: str) -> bool:
        """Delete a TXT record created by this provider instance."""
        zone_id = self._record_zones.get(record_id) or self.zone_id
        if not zone_id:
            raise DNSProviderError(f"Zone ID unknown for record: {record_id}")

        # Validate IDs before using in URL path
        safe_zone_id = _validate_cf_id(zone_id, "zone_id")
        safe_record_id = _validate_cf_id(record_id, "record_id")

        try:
            path = f"/zones/{safe_zone_id}/dns_records/{safe_record_id}"
            async with self._client() as client:
                resp = await client.delete(path)
                self._parse_response(resp.json())
            self._record_zones.pop(record_id, None)
            logger.info("[TLS-CLOUDFLARE] Deleted Cloudflare TXT record: %s", record_id)
            return True

        except DNSProviderError as e:
            # Record might already be deleted
            if "not found" in str(e).lower():
                logger.warning("[TLS-CLOUDFLARE] TXT record not found (already deleted?): %s", record_id)
                return True
            raise
        except Exception as e:
            raise DNSProviderError(f"Failed to delete TXT record: {e}")
