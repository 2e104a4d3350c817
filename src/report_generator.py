"""
Access control presentation and reporting: flat ledgers, CSV, JSON, and executive summaries.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pandas as pd
import structlog

from models import (
    AccessControlResult,
    DeficiencyRow,
    DeficientTransaction,
    QRCode,
    QRLedgerRow,
)
from profile_resolver import ProfileDirectory
from transaction_aggregator import TransactionSet

logger = structlog.get_logger()


class ReportGenerator:
    """Joins reconciled records with identities and ticket names, and writes reports."""

    def __init__(self, report_prefix: str = "access_control") -> None:
        self.report_prefix = report_prefix

    # =========================================================================
    # LEDGERS
    # =========================================================================

    def format_qr_ledger(
        self,
        qr_codes: List[QRCode],
        transactions: TransactionSet,
        profiles: ProfileDirectory,
    ) -> List[QRLedgerRow]:
        """One row per issued code; the holder shown is the code's current owner."""
        by_id = {t.id: t for t in transactions.transactions}
        rows = []
        for qr in qr_codes:
            txn = by_id.get(qr.transaction_id)
            holder = profiles.identity(qr.user_id)
            scanner = profiles.scanner_identity(qr.scanner_id)
            rows.append(
                QRLedgerRow(
                    id=qr.id,
                    transaction_id=qr.transaction_id,
                    user_id=qr.user_id,
                    created_at=qr.created_at,
                    scan=bool(qr.scan),
                    scanner_id=qr.scanner_id,
                    updated_at=qr.updated_at,
                    apple=bool(qr.apple),
                    google=bool(qr.google),
                    user_name=holder.name,
                    user_email=holder.email,
                    scanner_name=scanner.name if scanner else None,
                    scanner_email=scanner.email if scanner else None,
                    ticket_name=transactions.ticket_name(txn.ticket_id if txn else None),
                    source=txn.channel.value if txn else "unknown",
                    order_id=txn.order_id if txn else None,
                )
            )
        return rows

    def format_deficiency_ledger(
        self,
        deficient: List[DeficientTransaction],
        transactions: TransactionSet,
        profiles: ProfileDirectory,
    ) -> List[DeficiencyRow]:
        """One row per under-issued transaction; the holder shown is the original buyer."""
        rows = []
        for item in deficient:
            txn = item.transaction
            buyer = profiles.identity(txn.user_id)
            rows.append(
                DeficiencyRow(
                    id=txn.id,
                    transaction_id=txn.id,
                    user_id=txn.user_id,
                    user_name=buyer.name,
                    user_email=buyer.email,
                    ticket_name=transactions.ticket_name(txn.ticket_id),
                    quantity=item.expected,
                    actual_qrs=item.actual,
                    missing_qrs=item.deficit,
                    status=txn.status or "UNKNOWN",
                    source=txn.channel.value,
                    order_id=txn.order_id,
                    created_at=txn.created_at,
                    total=txn.total or 0,
                )
            )
        return rows

    # =========================================================================
    # REPORT FILES
    # =========================================================================

    def generate_all_reports(
        self, result: AccessControlResult, output_dir: Path
    ) -> Tuple[Path, Path, str, Path]:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        qr_csv_path = self._write_csv(
            result.qr_codes, QRLedgerRow, output_dir / self._filename(result, "qr_codes", "csv")
        )
        deficiency_csv_path = self._write_csv(
            result.transactions_missing_qr,
            DeficiencyRow,
            output_dir / self._filename(result, "missing_qr", "csv"),
        )
        summary_text = self.generate_executive_summary(result)
        json_path = self._generate_json_report(result, output_dir)

        return qr_csv_path, deficiency_csv_path, summary_text, json_path

    def _filename(self, result: AccessControlResult, kind: str, extension: str) -> str:
        return f"{self.report_prefix}_{result.event_id}_{kind}.{extension}"

    def _write_csv(self, rows: List[Any], model, csv_path: Path) -> Path:
        if not rows:
            df = pd.DataFrame(columns=list(model.model_fields.keys()))
        else:
            df = pd.DataFrame([row.model_dump() for row in rows])

        df.to_csv(csv_path, index=False)
        logger.info("Wrote CSV report", path=str(csv_path), rows=len(rows))
        return csv_path

    def _generate_json_report(self, result: AccessControlResult, output_dir: Path) -> Path:
        json_path = output_dir / self._filename(result, "report", "json")

        report_data = {
            "report_metadata": {
                "generated_at": datetime.utcnow().isoformat(),
                "event_id": result.event_id,
                "complete": result.is_complete,
                "degraded_sources": result.degraded_sources,
            },
            "stats": result.stats.model_dump(),
            "issuance": self._calculate_issuance_health(result),
            "qr_codes": [row.model_dump(mode="json") for row in result.qr_codes],
            "transactions_missing_qr": [
                row.model_dump(mode="json") for row in result.transactions_missing_qr
            ],
        }

        with open(json_path, "w") as f:
            json.dump(report_data, f, indent=2, default=str)

        logger.info("Wrote JSON report", path=str(json_path))
        return json_path

    def generate_executive_summary(self, result: AccessControlResult) -> str:
        stats = result.stats
        health = self._calculate_issuance_health(result)

        report = f"""
Access Control Reconciliation Summary
=====================================

Event: {result.event_id}
Report Generated: {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}
Data Completeness: {"COMPLETE" if result.is_complete else "PARTIAL (" + ", ".join(result.degraded_sources) + ")"}

TRANSACTIONS
------------
Transactions Read: {stats.total_transactions:,}
Paid With QR: {stats.paid_transactions:,}
Tickets Sold (expected QR codes): {stats.expected_qrs:,}

QR ISSUANCE
-----------
QR Codes Issued: {stats.actual_qrs:,}
Coverage: {health['coverage']:.2%}
Missing QR Codes: {stats.missing_qrs:,} across {stats.transactions_with_missing_qr:,} transactions
  App: {stats.missing_by_channel.get('app', 0):,} | Web: {stats.missing_by_channel.get('web', 0):,} | Cash: {stats.missing_by_channel.get('cash', 0):,}
Surplus QR Codes: {stats.surplus_qrs:,}

ACCESS
------
Scanned: {stats.scanned_qrs:,}
Apple Wallet: {stats.apple_wallet:,} | Google Wallet: {stats.google_wallet:,}
Transferred Tickets: {stats.transferred_tickets:,}

STATUS: {health['status']}

RECOMMENDED ACTIONS
-------------------
{self._generate_recommendations(result)}

"""
        return report.strip()

    def _calculate_issuance_health(self, result: AccessControlResult) -> Dict[str, Any]:
        stats = result.stats
        coverage = stats.coverage

        if stats.missing_qrs == 0:
            status = "OK"
        elif coverage >= 0.99:
            status = "NEEDS_REVIEW"
        else:
            status = "CRITICAL"

        return {
            "coverage": coverage,
            "missing_qrs": stats.missing_qrs,
            "status": status,
        }

    def _generate_recommendations(self, result: AccessControlResult) -> str:
        recommendations = []

        if result.stats.missing_qrs > 0:
            recommendations.append(
                "- Reissue QR codes for the transactions listed in the missing QR report"
            )
        else:
            recommendations.append("- No action required: every paid ticket has a QR code")

        if result.stats.surplus_qrs > 0:
            recommendations.append(
                "- Review transactions holding more QR codes than tickets purchased"
            )

        if not result.is_complete:
            recommendations.append(
                "- Rerun the reconciliation: some data could not be read and counts may be low"
            )

        return "\n".join(recommendations)
