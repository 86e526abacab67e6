"""
GoDaddy DNS provider for ACME DNS-01 challenges.
"""
import logging
from typing import Optional

import httpx

from .base import DNSProvider, DNSProviderError, candidate_zones, split_record_name


logger = logging.getLogger(__name__)

# GoDaddy's minimum TTL
MIN_TTL = 600


class GoDaddyDNS(DNSProvider):
    """GoDaddy Domains API implementation (production API key + secret)."""

    provider_id = "godaddy"
    BASE_URL = "https://api.godaddy.com/v1"

    def __init__(self, api_key: str, api_secret: str):
        self._headers = {
            "Authorization": f"sso-key {api_key}:{api_secret}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.BASE_URL, headers=self._headers, timeout=30.0)

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            return resp.json().get("message", resp.text)
        except ValueError:
            return resp.text

    @property
    def propagation_timeout(self) -> int:
        # GoDaddy is slow to publish changes
        return 600

    async def verify_credentials(self) -> tuple[bool, Optional[str]]:
        try:
            async with self._client() as client:
                resp = await client.get("/domains", params={"limit": 1})
            if resp.status_code != 200:
                return False, f"GoDaddy API error: {self._error_message(resp)}"
            return True, None
        except httpx.HTTPError as e:
            return False, f"Connection error: {e}"

    async def get_zone_id(self, domain: str) -> Optional[str]:
        try:
            async with self._client() as client:
                for zone_name in candidate_zones(domain):
                    resp = await client.get(f"/domains/{zone_name}")
                    if resp.status_code == 200:
                        logger.info("[TLS-GODADDY] Found GoDaddy domain: %s", zone_name)
                        return zone_name
                    if resp.status_code not in (404, 422):
                        raise DNSProviderError(f"GoDaddy API error: {self._error_message(resp)}")
            return None
        except httpx.HTTPError as e:
            raise DNSProviderError(f"Failed to get domain: {e}")

    async def create_txt_record(self, name: str, value: str, ttl: int = 60) -> str:
        zone = await self.get_zone_id(split_record_name(name))
        if not zone:
            raise DNSProviderError(f"Could not find domain for record: {name}")

        fqdn = name.rstrip(".")
        relative = fqdn[: -len(zone)].rstrip(".") or "@"

        try:
            async with self._client() as client:
                # PATCH appends without replacing other records
                resp = await client.patch(f"/domains/{zone}/records", json=[{
                    "type": "TXT",
                    "name": relative,
                    "data": value,
                    "ttl": max(MIN_TTL, ttl),
                }])
        except httpx.HTTPError as e:
            raise DNSProviderError(f"Failed to create TXT record: {e}")

        if resp.status_code != 200:
            raise DNSProviderError(f"GoDaddy API error: {self._error_message(resp)}")

        logger.info("[TLS-GODADDY] Created TXT record: %s", fqdn)
        return f"{zone}/{relative}"

    async def delete_txt_record(self, record_id: str) -> bool:
        zone, _, relative = record_id.partition("/")
        if not zone or not relative:
            raise DNSProviderError(f"Invalid record id: {record_id}")

        try:
            async with self._client() as client:
                resp = await client.delete(f"/domains/{zone}/records/TXT/{relative}")
        except httpx.HTTPError as e:
            raise DNSProviderError(f"Failed to delete TXT record: {e}")

        if resp.status_code == 404:
            logger.warning("[TLS-GODADDY] TXT record not found (already deleted?): %s", record_id)
            return True
        if resp.status_code not in (200, 204):
            raise DNSProviderError(f"GoDaddy API error: {self._error_message(resp)}")

        logger.info("[TLS-GODADDY] Deleted TXT record: %s", record_id)
        return True
