"""
AWS Route53 DNS provider for ACME DNS-01 challenges.
"""
import asyncio
import logging
import uuid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .base import DNSProvider, DNSProviderError, candidate_zones, split_record_name


logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


def _client_error_message(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Message", str(e))


class Route53DNS(DNSProvider):
    """
    AWS Route53 DNS API implementation for ACME DNS-01 challenges.

    Requires an access key pair allowed to call:
    - route53:ListHostedZonesByName
    - route53:ChangeResourceRecordSets
    - route53:GetChange
    """

    provider_id = "route53"

    def __init__(
        self,
        access_key_id: str,
        secret_access_key: str,
        region: str = "",
        zone_id: str = "",
    ):
        """
        Args:
            access_key_id: AWS access key ID
            secret_access_key: AWS secret access key
            region: AWS region (Route53 is global but the SDK needs one)
            zone_id: Optional hosted zone ID (auto-detected when empty)
        """
        self.zone_id = zone_id
        self.region = region or DEFAULT_REGION
        self._client = boto3.client(
            "route53",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=self.region,
        )
        # record_id -> (zone_id, resource record set)
        self._records: dict[str, tuple[str, dict]] = {}

    async def _call(self, fn, **kwargs):
        """Run a synchronous boto3 call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: fn(**kwargs))

    async def verify_credentials(self) -> tuple[bool, Optional[str]]:
        """Verify that the AWS credentials are valid for Route53."""
        try:
            await self._call(self._client.list_hosted_zones, MaxItems="1")
            return True, None
        except NoCredentialsError:
            return False, "AWS credentials not found"
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            return False, f"AWS error ({error_code}): {_client_error_message(e)}"
        except Exception as e:
            return False, f"Connection error: {e}"

    async def get_zone_id(self, domain: str) -> Optional[str]:
        """
        Get the hosted zone ID for a domain.

        Route53 zone names end with a trailing dot.
        """
        if self.zone_id:
            return self.zone_id

        try:
            for zone_name in candidate_zones(domain):
                zone_name_dot = f"{zone_name}."
                response = await self._call(
                    self._client.list_hosted_zones_by_name,
                    DNSName=zone_name_dot,
                    MaxItems="1",
                )

                for zone in response.get("HostedZones", []):
                    if zone["Name"] == zone_name_dot:
                        # "/hostedzone/Z1234567890" -> "Z1234567890"
                        zone_id = zone["Id"].replace("/hostedzone/", "")
                        logger.info("[TLS-ROUTE53] Found Route53 hosted zone: %s (%s)", zone_name, zone_id)
                        return zone_id

            return None

        except ClientError as e:
            raise DNSProviderError(f"Failed to get hosted zone: {_client_error_message(e)}")
        except BotoCoreError as e:
            raise DNSProviderError(f"Failed to get hosted zone: {e}")

    async def create_txt_record(
        self,
        name: str,
        value: str,
        ttl: int = 60,
    ) -> str:
        """Upsert the TXT record and wait for Route53 to report INSYNC."""
        domain = split_record_name(name)
        zone_id = await self.get_zone_id(domain)

        if not zone_id:
            raise DNSProviderError(f"Could not find hosted zone for domain: {domain}")

        record_set = {
            "Name": name if name.endswith(".") else f"{name}.",
            "Type": "TXT",
            "TTL": ttl,
            # Route53 requires quoted TXT record values
            "ResourceRecords": [{"Value": f'"{value}"'}],
        }

        try:
            response = await self._call(
                self._client.change_resource_record_sets,
                HostedZoneId=zone_id,
                ChangeBatch={
                    "Comment": "ACME DNS-01 challenge",
                    "Changes": [{"Action": "UPSERT", "ResourceRecordSet": record_set}],
                },
            )
        except ClientError as e:
            raise DNSProviderError(f"Failed to create TXT record: {_client_error_message(e)}")
        except BotoCoreError as e:
            raise DNSProviderError(f"Failed to create TXT record: {e}")

        change_id = response["ChangeInfo"]["Id"]
        logger.info("[TLS-ROUTE53] Created Route53 TXT record: %s (change: %s)", name, change_id)

        await self._wait_for_change(change_id)

        record_id = uuid.uuid4().hex
        self._records[record_id] = (zone_id, record_set)
        return record_id

    async def delete_txt_record(self, record_id: str) -> bool:
        """Delete a TXT record created by this provider instance."""
        entry = self._records.pop(record_id, None)
        if entry is None:
            logger.warning("[TLS-ROUTE53] Unknown TXT record id (already deleted?): %s", record_id)
            return True

        zone_id, record_set = entry
        try:
            await self._call(
                self._client.change_resource_record_sets,
                HostedZoneId=zone_id,
                ChangeBatch={
                    "Comment": "ACME DNS-01 challenge cleanup",
                    "Changes": [{"Action": "DELETE", "ResourceRecordSet": record_set}],
                },
            )
            logger.info("[TLS-ROUTE53] Deleted Route53 TXT record: %s", record_set["Name"])
            return True

        except ClientError as e:
            # Record might already be deleted
            if e.response.get("Error", {}).get("Code", "") == "InvalidChangeBatch":
                logger.warning("[TLS-ROUTE53] TXT record not found (already deleted?): %s", record_set["Name"])
                return True
            raise DNSProviderError(f"Failed to delete TXT record: {_client_error_message(e)}")
        except BotoCoreError as e:
            raise DNSProviderError(f"Failed to delete TXT record: {e}")

    async def _wait_for_change(
        self,
        change_id: str,
        timeout: int = 120,
        poll_interval: int = 5,
    ) -> None:
        """Wait for a Route53 change to propagate to all authoritative servers."""
        elapsed = 0

        while elapsed < timeout:
            response = await self._call(self._client.get_change, Id=change_id)

            status = response["ChangeInfo"]["Status"]
            if status == "INSYNC":
                logger.debug("[TLS-ROUTE53] Change %s is in sync", change_id)
                return

            logger.debug("[TLS-ROUTE53] Change %s status: %s", change_id, status)
            await asyncio.sleep(poll_interval)
            elapsed += poll_interval

        logger.warning("[TLS-ROUTE53] Change %s did not sync within %ss", change_id, timeout)
