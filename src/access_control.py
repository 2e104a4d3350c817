"""
Access control service for event administrators.

Exposes the read operation that reconciles sold tickets against issued QR codes
for one event, and the scan-toggle mutation used at the door.

Each reconciliation is a fresh, stateless read/reduce/report pass:
ticket types and channel ledgers -> QR codes -> reconciliation -> profiles -> ledgers.
"""

from __future__ import annotations

import asyncio
import math
import time
from datetime import datetime, timezone
from typing import Any, List, Optional

import structlog

from accounting import summarize_transactions
from backend_client import BackendClient, BackendError, eq_filter
from metrics import metrics
from models import AccessControlResult, AccountingSummary, Page, ScanToggleResult, Settings
from profile_resolver import ProfileResolver
from qr_index import QRIssuanceIndex
from reconciliation_engine import ReconciliationEngine
from report_generator import ReportGenerator
from transaction_aggregator import TransactionAggregator

logger = structlog.get_logger()

UNAUTHENTICATED = "User not authenticated"
QR_NOT_FOUND = "QR code not found or not writable by the caller"


class AccessControlService:
    """
    Coordinates the access control reconciliation for an event.

    Wires the components together:
    - TransactionAggregator reads the app, web and cash ledgers concurrently
    - QRIssuanceIndex reads issued codes in batches
    - ReconciliationEngine finds paid transactions short of codes
    - ProfileResolver resolves buyers, holders and scanning staff
    - ReportGenerator shapes the two ledgers
    """

    def __init__(
        self,
        client: BackendClient,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or Settings()
        self.client = client
        self.aggregator = TransactionAggregator(
            client,
            page_size=settings.TRANSACTION_PAGE_SIZE,
            strict=settings.STRICT_CHANNEL_FETCH,
        )
        self.qr_index = QRIssuanceIndex(
            client,
            batch_size=settings.QR_BATCH_SIZE,
            page_size=settings.TRANSACTION_PAGE_SIZE,
        )
        self.profile_resolver = ProfileResolver(client, batch_size=settings.PROFILE_BATCH_SIZE)
        self.reconciliation_engine = ReconciliationEngine(settings.PAID_WITH_QR_STATUS)
        self.report_generator = ReportGenerator()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccessControlService":
        client = BackendClient(
            settings.SUPABASE_URL,
            settings.SUPABASE_KEY,
            access_token=settings.SUPABASE_ACCESS_TOKEN,
            timeout=settings.REQUEST_TIMEOUT,
        )
        return cls(client, settings)

    async def get_event_access_control(self, event_id: str) -> AccessControlResult:
        """
        Reconcile sold tickets against issued QR codes for one event.

        Args:
            event_id: Event whose ticket types are reconciled

        Returns:
            AccessControlResult with the full QR ledger and the ledger of paid
            transactions missing codes. Sub-fetch failures degrade to empty
            slices and are listed in degraded_sources.
        """
        start_time = time.time()
        logger.info("Starting access control reconciliation", event_id=event_id)

        try:
            transactions = await self.aggregator.aggregate(event_id)
            result = AccessControlResult(
                event_id=event_id, degraded_sources=list(transactions.degraded_sources)
            )

            if not transactions.transactions:
                logger.info(
                    "No transactions for event",
                    event_id=event_id,
                    ticket_types=len(transactions.ticket_types),
                )
                metrics.record_reconciliation_run("empty", time.time() - start_time)
                return result

            issuance = await asyncio.to_thread(
                self.qr_index.fetch, [t.id for t in transactions.transactions]
            )
            if issuance.failed_batches:
                result.degraded_sources.append(
                    f"qr_codes:{issuance.failed_batches} batches"
                )

            outcome = self.reconciliation_engine.reconcile(
                transactions.transactions, issuance.codes, issuance.counts
            )

            user_ids: List[Optional[str]] = [qr.user_id for qr in issuance.codes]
            user_ids.extend(item.transaction.user_id for item in outcome.deficient)
            user_ids.extend(qr.scanner_id for qr in issuance.codes)
            profiles = await asyncio.to_thread(self.profile_resolver.resolve, user_ids)
            if profiles.failed_batches:
                result.degraded_sources.append(
                    f"profiles:{profiles.failed_batches} batches"
                )

            result.qr_codes = self.report_generator.format_qr_ledger(
                issuance.codes, transactions, profiles
            )
            result.transactions_missing_qr = self.report_generator.format_deficiency_ledger(
                outcome.deficient, transactions, profiles
            )
            result.stats = outcome.stats

        except Exception as e:
            logger.error(
                "Access control reconciliation failed",
                event_id=event_id,
                error=str(e)[:500],
                exc_info=True,
            )
            metrics.record_reconciliation_run("failed", time.time() - start_time)
            raise

        for channel, missing in outcome.stats.missing_by_channel.items():
            metrics.record_deficiencies(
                channel,
                sum(1 for row in result.transactions_missing_qr if row.source == channel),
                missing,
            )
        duration = time.time() - start_time
        metrics.record_reconciliation_run(
            "complete" if result.is_complete else "partial", duration
        )
        logger.info(
            "Access control reconciliation complete",
            event_id=event_id,
            qr_codes=len(result.qr_codes),
            transactions_missing_qr=len(result.transactions_missing_qr),
            degraded_sources=result.degraded_sources,
            duration_ms=int(duration * 1000),
        )
        return result

    async def get_event_accounting(self, event_id: str) -> AccountingSummary:
        """Revenue rollup over the event's paid transactions across all channels."""
        transactions = await self.aggregator.aggregate(event_id)
        if transactions.degraded_sources:
            logger.warning(
                "Accounting computed from partial data",
                event_id=event_id,
                degraded_sources=transactions.degraded_sources,
            )
        return summarize_transactions(
            transactions.transactions, self.reconciliation_engine.paid_status
        )

    def toggle_scan_status(
        self, qr_id: str, current_status: bool, access_token: Optional[str] = None
    ) -> ScanToggleResult:
        """
        Flip a code's scanned flag on behalf of the authenticated caller.

        Marking as scanned records the caller as scanner; unmarking clears it.
        Failures are returned, never raised.
        """
        try:
            user = self.client.get_user(access_token)
        except BackendError as e:
            logger.error("Could not resolve caller identity", qr_id=qr_id, error=e.message)
            metrics.record_scan_toggle("failed")
            return ScanToggleResult(success=False, error=e.message)

        if not user:
            logger.warning("Scan toggle rejected: unauthenticated caller", qr_id=qr_id)
            metrics.record_scan_toggle("unauthenticated")
            return ScanToggleResult(success=False, error=UNAUTHENTICATED)

        return toggle_qr_scan(
            self.client, qr_id, current_status, user["id"], access_token=access_token
        )


def toggle_qr_scan(
    client: BackendClient,
    qr_id: str,
    current_status: bool,
    scanner_id: Optional[str],
    access_token: Optional[str] = None,
) -> ScanToggleResult:
    """
    Flip a code's scanned flag; scanner_id is the acting staff member (None if unauthenticated).

    The write is sent with the caller's access_token when given. An update
    that changes no row (unknown id, or a row the caller may not write) fails.
    """
    if not scanner_id:
        metrics.record_scan_toggle("unauthenticated")
        return ScanToggleResult(success=False, error=UNAUTHENTICATED)

    new_status = not current_status
    try:
        updated = client.update(
            "qr_codes",
            {"id": eq_filter(qr_id)},
            {
                "scan": new_status,
                "scanner_id": scanner_id if new_status else None,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            access_token=access_token,
        )
    except BackendError as e:
        logger.error("Error updating QR scan status", qr_id=qr_id, error=e.message)
        metrics.record_scan_toggle("failed")
        return ScanToggleResult(success=False, error=e.message)

    if not updated:
        logger.error("QR scan status not updated: no matching code", qr_id=qr_id)
        metrics.record_scan_toggle("failed")
        return ScanToggleResult(success=False, error=QR_NOT_FOUND)

    logger.info("QR scan status updated", qr_id=qr_id, scanned=new_status, scanner_id=scanner_id)
    metrics.record_scan_toggle("scanned" if new_status else "unscanned")
    return ScanToggleResult(success=True, new_status=new_status)


def paginate(rows: List[Any], page: int = 1, page_size: int = 50) -> Page:
    """Slice ledger rows into a 1-based page."""
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be positive")
    offset = (page - 1) * page_size
    return Page(
        data=rows[offset:offset + page_size],
        total_count=len(rows),
        page=page,
        page_size=page_size,
        total_pages=math.ceil(len(rows) / page_size),
    )
