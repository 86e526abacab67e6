"""
TLS API endpoints for certificate management.

Provides REST endpoints for:
- TLS status and the installed certificate
- The DNS provider catalogue
- Encrypting DNS-01 provider credentials
- Manual certificate reload and DNS-01 renewal
- Testing DNS provider credentials
"""
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from .dns_providers import (
    DNSProviderError,
    create_dns_provider,
    dns_providers,
    validate_credentials,
)
from .errors import CertificateLoadError, CertificateObtainError, SSLConfigError
from .manager import TLSManager
from .settings import DNS01Config, read_ssl_config, save_ssl_config, validated_at_now
from .vault import encrypt_credentials


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tls", tags=["TLS"])


# ============================================================================
# Request/Response Models
# ============================================================================


class CertInfoResponse(BaseModel):
    """Installed certificate details."""

    subject: str
    issuer: str
    not_before: str
    not_after: str
    dns_names: list[str]
    is_expiring: bool
    days_until_expiry: int


class TLSStatusResponse(BaseModel):
    """TLS configuration status."""

    enabled: bool
    strategy: str  # "none" | "manual" | "http-01" | "dns-01"
    challenge: Optional[str] = None
    staging: bool = False
    domains: list[str] = Field(default_factory=list)
    fallback_reason: Optional[str] = None
    certificate: Optional[CertInfoResponse] = None


class DNS01CredentialsRequest(BaseModel):
    """Provider credentials to validate and encrypt."""

    provider: str
    credentials: dict[str, str] = Field(default_factory=dict)
    # Call the provider API before accepting the credentials
    verify: bool = False
    # Write the result into the server config file
    save: bool = True


class DNS01CredentialsResponse(BaseModel):
    provider: str
    credentials_encrypted: str
    validated_at: str
    saved: bool = False


class DNSProviderTestRequest(BaseModel):
    """Request to test DNS provider credentials."""

    provider: str
    credentials: dict[str, str] = Field(default_factory=dict)
    domain: str = ""


# ============================================================================
# Dependencies
# ============================================================================


def get_tls_manager(request: Request) -> TLSManager:
    manager = getattr(request.app.state, "tls_manager", None)
    if manager is None:
        raise HTTPException(503, "TLS manager not initialized")
    return manager


def get_secret_key(request: Request) -> str:
    secret = getattr(request.app.state, "secret_key", None)
    if not secret:
        raise HTTPException(503, "Server secret key is not configured")
    return secret


# ============================================================================
# Status Endpoints
# ============================================================================


@router.get("/status", response_model=TLSStatusResponse)
async def get_tls_status(manager: TLSManager = Depends(get_tls_manager)):
    """
    Get current TLS status.

    Returns the active strategy, whether TLS is serving, and the installed
    certificate (null when none is loaded).
    """
    return TLSStatusResponse(**manager.status())


@router.get("/dns-providers")
async def list_dns_providers():
    """Supported DNS providers and the credential fields each one needs."""
    return {"providers": [info.to_dict() for info in dns_providers()]}


# ============================================================================
# DNS-01 Credentials
# ============================================================================


@router.post("/dns01/credentials", response_model=DNS01CredentialsResponse)
async def set_dns01_credentials(
    body: DNS01CredentialsRequest,
    request: Request,
    secret_key: str = Depends(get_secret_key),
):
    """
    Validate and encrypt DNS-01 provider credentials.

    Credential values are never echoed back; only the encrypted envelope
    is returned (and saved to the config file when requested).
    """
    provider_id = body.provider.strip().lower()
    try:
        cleaned = validate_credentials(provider_id, body.credentials)
    except DNSProviderError as e:
        raise HTTPException(400, str(e))

    if body.verify:
        try:
            provider = create_dns_provider(provider_id, cleaned)
            valid, error = await provider.verify_credentials()
        except DNSProviderError as e:
            raise HTTPException(400, str(e))
        if not valid:
            raise HTTPException(400, f"Invalid credentials: {error}")

    dns01 = DNS01Config(
        provider=provider_id,
        credentials_encrypted=encrypt_credentials(cleaned, secret_key),
        validated_at=validated_at_now(),
    )

    saved = False
    if body.save:
        config_path: Optional[Path] = getattr(request.app.state, "ssl_config_path", None)
        try:
            ssl_config = read_ssl_config(config_path)
        except SSLConfigError as e:
            raise HTTPException(409, f"Existing SSL configuration is invalid, credentials not saved: {e}")
        ssl_config.dns01 = dns01
        saved = save_ssl_config(ssl_config, config_path)
        if not saved:
            raise HTTPException(500, "Failed to save DNS-01 credentials")
        logger.info("[TLS-ROUTES] Saved DNS-01 credentials for provider %s", provider_id)

    return DNS01CredentialsResponse(
        provider=dns01.provider,
        credentials_encrypted=dns01.credentials_encrypted,
        validated_at=dns01.validated_at,
        saved=saved,
    )


# ============================================================================
# Reload / Renewal
# ============================================================================


@router.post("/reload")
async def reload_certificates(manager: TLSManager = Depends(get_tls_manager)):
    """Re-read the manual certificate files (no-op for ACME strategies)."""
    try:
        manager.reload_certificates()
    except CertificateLoadError as e:
        raise HTTPException(400, str(e))
    return {"success": True, "message": "Certificates reloaded", "strategy": manager.strategy.value}


@router.post("/renew")
async def trigger_renewal(manager: TLSManager = Depends(get_tls_manager)):
    """
    Renew the DNS-01 certificate if it is missing or expiring.

    Returns whether a new certificate was installed.
    """
    try:
        renewed = await manager.renew_certificate_dns01()
    except CertificateObtainError as e:
        logger.error("[TLS-ROUTES] Renewal failed: %s", e)
        raise HTTPException(502, f"Renewal failed: {e}")

    message = "Certificate renewed successfully" if renewed else "Renewal not needed"
    return {"success": True, "renewed": renewed, "message": message}


# ============================================================================
# Testing Endpoints
# ============================================================================


@router.post("/test-dns-provider")
async def test_dns_provider(request: DNSProviderTestRequest):
    """
    Test DNS provider credentials.

    Verifies that the credentials are accepted and, when a domain is
    given, that the provider manages a zone for it.
    """
    try:
        provider = create_dns_provider(request.provider.strip().lower(), request.credentials)
    except DNSProviderError as e:
        raise HTTPException(400, str(e))

    try:
        valid, error = await provider.verify_credentials()
        if not valid:
            return {"success": False, "message": f"Invalid credentials: {error}"}

        # Try to get zone if domain provided
        if request.domain:
            zone_id = await provider.get_zone_id(request.domain)
            if zone_id:
                return {
                    "success": True,
                    "message": f"Credentials valid. Found zone: {zone_id}",
                    "zone_id": zone_id,
                }
            return {
                "success": False,
                "message": f"Credentials valid but zone not found for {request.domain}",
            }

        return {"success": True, "message": "Credentials valid"}

    except DNSProviderError as e:
        return {"success": False, "message": str(e)}
