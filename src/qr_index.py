"""
Fetches the QR codes issued for a set of transactions and counts them per transaction.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError

from backend_client import BackendClient, BackendError, in_filter, iter_batches
from metrics import metrics
from models import QRCode

logger = logging.getLogger(__name__)

QR_COLUMNS = "id,transaction_id,user_id,created_at,scan,scanner_id,updated_at,apple,google"


class QRIssuance(BaseModel):
    """Issued codes plus the per-transaction count map."""

    codes: List[QRCode] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    failed_batches: int = 0


class QRIssuanceIndex:
    """Reads qr_codes in IN-clause sized batches of transaction ids, paging each batch."""

    def __init__(
        self, client: BackendClient, batch_size: int = 100, page_size: int = 1000
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.client = client
        self.batch_size = batch_size
        self.page_size = page_size

    @staticmethod
    def count_by_transaction(codes: List[QRCode]) -> Dict[str, int]:
        return dict(Counter(code.transaction_id for code in codes))

    def _fetch_batch(self, batch: List[str]) -> List[Dict[str, Any]]:
        """Page one batch until a page comes back shorter than page_size."""
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = self.client.select(
                "qr_codes",
                QR_COLUMNS,
                {"transaction_id": in_filter(batch)},
                order="id.asc",
                offset=offset,
                limit=self.page_size,
            )
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += self.page_size

    def fetch(self, transaction_ids: List[str]) -> QRIssuance:
        """
        Fetch every code referencing the given transactions.

        A failed batch is logged and skipped; its transactions then look as if
        they had no codes, which failed_batches makes visible to the caller.
        """
        issuance = QRIssuance()
        seen = set()
        unique_ids = list(dict.fromkeys(transaction_ids))

        for batch_number, batch in enumerate(
            iter_batches(unique_ids, self.batch_size), 1
        ):
            try:
                rows = self._fetch_batch(batch)
            except BackendError as exc:
                logger.error("Failed to read QR code batch %d: %s", batch_number, exc)
                issuance.failed_batches += 1
                metrics.record_degraded_fetch("qr_codes")
                continue

            for row in rows:
                try:
                    code = QRCode(**row)
                except ValidationError as exc:
                    logger.warning(f"Skipping invalid QR code record: {exc}")
                    continue
                if code.id in seen:
                    continue
                seen.add(code.id)
                issuance.codes.append(code)

        issuance.counts = self.count_by_transaction(issuance.codes)
        logger.info(
            "Fetched %d QR codes for %d transactions", len(issuance.codes), len(unique_ids)
        )
        return issuance
