"""
Unit tests for ReconciliationEngine

Covers core business logic: expected vs issued QR codes per paid transaction,
deficit amounts, status filtering, and diagnostic totals.
"""

from datetime import datetime
import time

import pytest

from models import Channel, QRCode, ReconciliationOutcome, Transaction
from reconciliation_engine import ReconciliationEngine


def make_txn(txn_id, quantity=1, status="PAID WITH QR", channel=Channel.WEB, user_id="buyer-1"):
    return Transaction(
        id=txn_id,
        ticket_id="T1",
        user_id=user_id,
        order_id=f"ORDER-{txn_id}",
        quantity=quantity,
        status=status,
        total=100.0,
        created_at=datetime(2025, 9, 30, 10, 0, 0),
        channel=channel,
    )


def make_codes(txn_id, count, user_id="buyer-1", **flags):
    return [
        QRCode(id=f"{txn_id}-qr-{i}", transaction_id=txn_id, user_id=user_id, **flags)
        for i in range(count)
    ]


# -------------------------------
# TEST SUITE
# -------------------------------
class TestReconciliationEngine:
    """Test suite for ReconciliationEngine class"""

    @pytest.fixture
    def engine(self):
        """Return a ReconciliationEngine instance for testing."""
        return ReconciliationEngine()

    # ---------------------------
    # Core Reconciliation Tests
    # ---------------------------
    def test_fully_issued_transaction_is_not_deficient(self, engine):
        result = engine.reconcile([make_txn("X", quantity=3)], make_codes("X", 3))
        assert result.deficient == []
        assert result.stats.missing_qrs == 0

    def test_under_issued_transaction_reports_deficit(self, engine):
        result = engine.reconcile([make_txn("X", quantity=3)], make_codes("X", 2))

        assert len(result.deficient) == 1
        item = result.deficient[0]
        assert item.transaction.id == "X"
        assert item.expected == 3
        assert item.actual == 2
        assert item.deficit == 1

    def test_transaction_without_codes_is_fully_deficient(self, engine):
        result = engine.reconcile([make_txn("X", quantity=2)], [])
        assert result.deficient[0].actual == 0
        assert result.deficient[0].deficit == 2

    @pytest.mark.parametrize("status", ["PENDING", "REJECTED", "PAID", None])
    def test_other_statuses_never_deficient(self, engine, status):
        result = engine.reconcile([make_txn("X", quantity=3, status=status)], [])
        assert result.deficient == []
        assert result.stats.paid_transactions == 0
        assert result.stats.total_transactions == 1

    @pytest.mark.parametrize("quantity", [0, None])
    def test_zero_or_missing_quantity_expects_one_code(self, engine, quantity):
        missing = engine.reconcile([make_txn("X", quantity=quantity)], [])
        assert missing.deficient[0].expected == 1
        assert missing.deficient[0].deficit == 1

        issued = engine.reconcile([make_txn("X", quantity=quantity)], make_codes("X", 1))
        assert issued.deficient == []

    def test_surplus_codes_are_not_deficient(self, engine):
        result = engine.reconcile([make_txn("X", quantity=1)], make_codes("X", 3))
        assert result.deficient == []
        assert result.stats.surplus_qrs == 2

    def test_deficient_transactions_keep_input_order(self, engine):
        txns = [make_txn("C"), make_txn("A"), make_txn("B")]
        result = engine.reconcile(txns, [])
        assert [d.transaction.id for d in result.deficient] == ["C", "A", "B"]

    def test_duplicate_transactions_reported_once(self, engine):
        result = engine.reconcile([make_txn("X", quantity=2), make_txn("X", quantity=2)], [])
        assert len(result.deficient) == 1
        assert result.stats.expected_qrs == 2

    def test_empty_inputs(self, engine):
        result = engine.reconcile([], [])
        assert isinstance(result, ReconciliationOutcome)
        assert result.deficient == []
        assert result.stats.expected_qrs == 0
        assert result.stats.coverage == 1.0

    # ---------------------------
    # Statistics
    # ---------------------------
    def test_stats_totals(self, engine):
        txns = [
            make_txn("A", quantity=2, channel=Channel.APP),
            make_txn("W", quantity=3, channel=Channel.WEB),
            make_txn("C", quantity=1, channel=Channel.CASH),
            make_txn("P", quantity=5, status="PENDING"),
        ]
        codes = (
            make_codes("A", 2, scan=True, apple=True)
            + make_codes("W", 1, google=True)
        )
        result = engine.reconcile(txns, codes)
        stats = result.stats

        assert stats.total_transactions == 4
        assert stats.paid_transactions == 3
        assert stats.expected_qrs == 6
        assert stats.actual_qrs == 3
        assert stats.missing_qrs == 3
        assert stats.missing_by_channel == {"app": 0, "web": 2, "cash": 1}
        assert stats.transactions_with_missing_qr == 2
        assert stats.scanned_qrs == 2
        assert stats.apple_wallet == 2
        assert stats.google_wallet == 1
        assert stats.coverage == pytest.approx(0.5)

    def test_transferred_tickets_counted(self, engine):
        codes = [
            QRCode(id="qr-1", transaction_id="X", user_id="buyer-1"),
            QRCode(id="qr-2", transaction_id="X", user_id="friend"),
        ]
        result = engine.reconcile([make_txn("X", quantity=2)], codes)
        assert result.stats.transferred_tickets == 1

    def test_precomputed_counts_are_used(self, engine):
        result = engine.reconcile([make_txn("X", quantity=2)], [], qr_counts={"X": 2})
        assert result.deficient == []

    def test_custom_paid_status(self):
        engine = ReconciliationEngine(paid_status="ISSUED")
        result = engine.reconcile(
            [make_txn("X", status="ISSUED"), make_txn("Y", status="PAID WITH QR")], []
        )
        assert [d.transaction.id for d in result.deficient] == ["X"]

    # ---------------------------
    # Performance & Scaling
    # ---------------------------
    def test_large_dataset_performance(self, engine):
        """Reconcile 5000 transactions with 10 short of codes efficiently (<2s)."""
        txns = [make_txn(f"TXN_{i:05d}", quantity=2) for i in range(5000)]
        codes = []
        for i, txn in enumerate(txns):
            codes.extend(make_codes(txn.id, 1 if i < 10 else 2))

        start = time.time()
        result = engine.reconcile(txns, codes)
        elapsed = time.time() - start

        assert len(result.deficient) == 10
        assert result.stats.missing_qrs == 10
        assert elapsed < 2.0
