"""
Core reconciliation logic for comparing sold tickets against issued QR codes.

For every transaction whose status says codes should exist, the number of codes
referencing it must equal its purchased quantity. Transactions short of codes are
reported as deficient; nothing is repaired here.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional

from models import (
    Channel,
    DeficientTransaction,
    QRCode,
    ReconciliationOutcome,
    ReconciliationStats,
    Transaction,
)
from qr_index import QRIssuanceIndex

# Standard logger for audit trail and operational monitoring
logger = logging.getLogger(__name__)

SAMPLE_SIZE = 5


class ReconciliationEngine:
    """Compares expected and issued QR codes per paid transaction."""

    def __init__(self, paid_status: str = "PAID WITH QR") -> None:
        self.paid_status = paid_status

    def reconcile(
        self,
        transactions: List[Transaction],
        qr_codes: List[QRCode],
        qr_counts: Optional[Dict[str, int]] = None,
    ) -> ReconciliationOutcome:
        """
        Execute reconciliation between transactions and issued codes.

        Args:
            transactions: Every transaction of the event, any status or channel
            qr_codes: Every code issued for those transactions
            qr_counts: Codes per transaction id, derived from qr_codes if omitted

        Returns:
            ReconciliationOutcome with deficient transactions (in input order),
            the per-transaction code counts, and diagnostic totals
        """
        if qr_counts is None:
            qr_counts = QRIssuanceIndex.count_by_transaction(qr_codes)
        paid: List[Transaction] = []
        seen = set()
        for t in transactions:
            if t.status == self.paid_status and t.id not in seen:
                seen.add(t.id)
                paid.append(t)

        deficient: List[DeficientTransaction] = []
        for txn in paid:
            expected = txn.expected_codes
            actual = qr_counts.get(txn.id, 0)
            if actual < expected:
                deficient.append(
                    DeficientTransaction(transaction=txn, expected=expected, actual=actual)
                )
                logger.debug("Deficient transaction found: %s", txn.id)

        stats = self._build_stats(transactions, paid, qr_codes, qr_counts, deficient)
        self._log_summary(stats, deficient)

        return ReconciliationOutcome(deficient=deficient, qr_counts=qr_counts, stats=stats)

    @staticmethod
    def _build_stats(
        transactions: List[Transaction],
        paid: List[Transaction],
        qr_codes: List[QRCode],
        qr_counts: Dict[str, int],
        deficient: List[DeficientTransaction],
    ) -> ReconciliationStats:
        buyers = {t.id: t.user_id for t in transactions}
        expected_qrs = sum(t.expected_codes for t in paid)
        paid_actual = sum(qr_counts.get(t.id, 0) for t in paid)

        missing_by_channel = {channel.value: 0 for channel in Channel}
        for item in deficient:
            missing_by_channel[item.transaction.channel.value] += item.deficit

        transferred = sum(
            1
            for qr in qr_codes
            if qr.transaction_id in buyers
            and qr.user_id
            and qr.user_id != buyers[qr.transaction_id]
        )

        return ReconciliationStats(
            total_transactions=len(transactions),
            paid_transactions=len(paid),
            expected_qrs=expected_qrs,
            actual_qrs=len(qr_codes),
            paid_actual_qrs=paid_actual,
            missing_qrs=sum(item.deficit for item in deficient),
            surplus_qrs=sum(
                max(0, qr_counts.get(t.id, 0) - t.expected_codes) for t in paid
            ),
            scanned_qrs=sum(1 for qr in qr_codes if qr.scan),
            apple_wallet=sum(1 for qr in qr_codes if qr.apple),
            google_wallet=sum(1 for qr in qr_codes if qr.google),
            transferred_tickets=transferred,
            transactions_with_missing_qr=len(deficient),
            missing_by_channel=missing_by_channel,
        )

    @staticmethod
    def _log_summary(
        stats: ReconciliationStats, deficient: List[DeficientTransaction]
    ) -> None:
        logger.info(
            "Reconciliation complete: %d paid of %d transactions, "
            "expected %d QR codes, issued %d (difference %d)",
            stats.paid_transactions,
            stats.total_transactions,
            stats.expected_qrs,
            stats.paid_actual_qrs,
            stats.expected_qrs - stats.paid_actual_qrs,
        )
        if not deficient:
            return

        logger.warning(
            "%d transactions missing %d QR codes (app=%d, web=%d, cash=%d)",
            len(deficient),
            stats.missing_qrs,
            stats.missing_by_channel[Channel.APP.value],
            stats.missing_by_channel[Channel.WEB.value],
            stats.missing_by_channel[Channel.CASH.value],
        )
        for item in deficient[:SAMPLE_SIZE]:
            logger.warning(
                "  %s | expected %d | issued %d | missing %d | channel %s",
                item.transaction.id,
                item.expected,
                item.actual,
                item.deficit,
                item.transaction.channel.value,
            )
        if len(deficient) > SAMPLE_SIZE:
            logger.warning("  ... and %d more", len(deficient) - SAMPLE_SIZE)
