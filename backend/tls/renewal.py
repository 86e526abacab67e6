"""
Scheduled certificate renewal.

Background task that periodically asks the TLS manager to renew its
DNS-01 certificate or re-read its manual certificate files. The HTTP-01
strategy renews itself and is skipped here.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .errors import TLSError
from .manager import Strategy, TLSManager


logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = 12 * 3600  # seconds


async def check_and_renew_certificate(
    manager: TLSManager,
    timeout: Optional[float] = None,
) -> tuple[bool, Optional[str]]:
    """
    Run one renewal pass for the manager's strategy.

    Returns:
        Tuple of (renewed, error_message)
    """
    try:
        if manager.strategy == Strategy.DNS01:
            renewed = await manager.renew_certificate_dns01(timeout=timeout)
            return renewed, None
        if manager.strategy == Strategy.MANUAL:
            manager.reload_certificates()
            return True, None
    except TLSError as e:
        return False, str(e)
    return False, None


async def certificate_renewal_task(
    manager: TLSManager,
    check_interval: int = DEFAULT_CHECK_INTERVAL,
    timeout: Optional[float] = None,
    on_renewed: Optional[Callable[[], Awaitable[None]]] = None,
) -> None:
    """
    Background task that periodically checks and renews certificates.

    Args:
        manager: The TLS manager to drive
        check_interval: Interval between checks in seconds (default: 12 hours)
        timeout: Per-attempt limit for DNS-01 issuance
        on_renewed: Async callback after a new DNS-01 certificate is installed
    """
    logger.info(
        "[TLS-RENEWAL] Certificate renewal task started (checking every %s seconds)",
        check_interval,
    )

    while True:
        try:
            renewed, error = await check_and_renew_certificate(manager, timeout)

            if error:
                logger.warning("[TLS-RENEWAL] Certificate renewal check failed: %s", error)
            elif renewed and manager.strategy == Strategy.DNS01:
                logger.info("[TLS-RENEWAL] Certificate was renewed by background task")
                if on_renewed:
                    try:
                        await on_renewed()
                    except Exception as e:
                        logger.error("[TLS-RENEWAL] Renewal callback failed: %s", e)

        except asyncio.CancelledError:
            logger.info("[TLS-RENEWAL] Certificate renewal task cancelled")
            raise
        except Exception as e:
            logger.exception("[TLS-RENEWAL] Error in certificate renewal task: %s", e)

        # Wait before next check
        await asyncio.sleep(check_interval)


class CertificateRenewalManager:
    """
    Manager for the certificate renewal background task.

    Provides methods to start, stop, and monitor the renewal task.
    """

    def __init__(self, manager: TLSManager):
        self.manager = manager
        self._task: Optional[asyncio.Task] = None
        self._check_interval: int = DEFAULT_CHECK_INTERVAL
        self.last_check: Optional[str] = None
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        """Check if the renewal task is running."""
        return self._task is not None and not self._task.done()

    @property
    def check_interval(self) -> int:
        return self._check_interval

    def start(self, check_interval: int = DEFAULT_CHECK_INTERVAL, timeout: Optional[float] = None) -> None:
        """
        Start the certificate renewal background task.

        Args:
            check_interval: Interval between checks in seconds
            timeout: Per-attempt limit for DNS-01 issuance
        """
        if self.is_running:
            logger.warning("[TLS-RENEWAL] Renewal task already running")
            return
        if self.manager.strategy not in (Strategy.DNS01, Strategy.MANUAL):
            logger.info("[TLS-RENEWAL] Strategy %s needs no scheduled renewal", self.manager.strategy.value)
            return

        self._check_interval = check_interval
        self._task = asyncio.create_task(
            certificate_renewal_task(self.manager, check_interval, timeout)
        )
        logger.info("[TLS-RENEWAL] Certificate renewal manager started")

    async def stop(self) -> None:
        """Stop the certificate renewal background task."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("[TLS-RENEWAL] Certificate renewal manager stopped")
        self._task = None

    async def trigger_renewal(self, timeout: Optional[float] = None) -> tuple[bool, Optional[str]]:
        """Manually trigger a renewal pass."""
        renewed, error = await check_and_renew_certificate(self.manager, timeout)
        self.last_check = datetime.now(timezone.utc).isoformat()
        self.last_error = error
        return renewed, error
