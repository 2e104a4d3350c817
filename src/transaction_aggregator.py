"""
Reads an event's transactions from the three channel ledgers.

Each ledger is paged sequentially with fixed-size range pagination; the three
ledgers are read concurrently and merged once every branch has finished.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from backend_client import BackendClient, BackendError, eq_filter, in_filter
from metrics import metrics
from models import UNKNOWN, Channel, TicketType, Transaction

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = (
    "id,ticket_id,user_id,order_id,quantity,status,total,price,variable_fee,tax,created_at"
)


class ChannelFetchError(BackendError):
    """A channel ledger could not be read and partial results are not accepted."""

    def __init__(self, channel: Channel, message: str) -> None:
        super().__init__(f"Failed to read {channel.value} ledger: {message}")
        self.channel = channel


class TransactionSet(BaseModel):
    """Every transaction referencing an event's ticket types, across channels."""

    ticket_types: Dict[str, TicketType] = Field(default_factory=dict)
    transactions: List[Transaction] = Field(default_factory=list)
    degraded_sources: List[str] = Field(default_factory=list)

    def ticket_name(self, ticket_id) -> str:
        ticket = self.ticket_types.get(ticket_id) if ticket_id else None
        return ticket.name if ticket and ticket.name else UNKNOWN


class TransactionAggregator:
    """Merges the app, web and cash ledgers for one event."""

    def __init__(
        self, client: BackendClient, page_size: int = 1000, strict: bool = False
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.client = client
        self.page_size = page_size
        self.strict = strict

    def fetch_ticket_types(self, event_id: str) -> List[TicketType]:
        rows = self.client.select(
            "tickets", "id,name,price,event_id", {"event_id": eq_filter(event_id)}
        )
        ticket_types = []
        for row in rows:
            try:
                ticket_types.append(TicketType(**row))
            except ValidationError as exc:
                logger.warning(f"Skipping invalid ticket record: {exc}")
        return ticket_types

    def fetch_channel(self, channel: Channel, ticket_ids: List[str]) -> List[Transaction]:
        """
        Page through one ledger until a page comes back shorter than page_size.

        Pages are requested in a stable order so a row is never returned twice
        while the ledger is unchanged.
        """
        transactions: List[Transaction] = []
        offset = 0
        while True:
            rows = self.client.select(
                channel.table_name,
                TRANSACTION_COLUMNS,
                {"ticket_id": in_filter(ticket_ids)},
                order="created_at.desc,id.asc",
                offset=offset,
                limit=self.page_size,
            )
            for row in rows:
                try:
                    transactions.append(Transaction(**row, channel=channel))
                except (TypeError, ValidationError) as exc:
                    logger.warning(f"Skipping invalid {channel.value} record: {exc}")

            if len(rows) < self.page_size:
                break
            offset += self.page_size

        logger.info(
            "Fetched %d transactions from %s", len(transactions), channel.table_name
        )
        return transactions

    def _fetch_channel_guarded(
        self, channel: Channel, ticket_ids: List[str]
    ) -> Tuple[Channel, List[Transaction], Optional[str]]:
        try:
            return channel, self.fetch_channel(channel, ticket_ids), None
        except BackendError as exc:
            logger.error(
                "Failed to read %s ledger: %s", channel.table_name, exc.message
            )
            return channel, [], exc.message

    @staticmethod
    def _build_index(transactions: List[Transaction]) -> Dict[str, Transaction]:
        """Index transactions by id, keeping the first occurrence of a duplicate."""
        index: Dict[str, Transaction] = {}
        for t in transactions:
            if t.id in index:
                logger.warning(
                    "Duplicate transaction id %s encountered; keeping first occurrence.",
                    t.id,
                )
                continue
            index[t.id] = t
        return index

    async def aggregate(self, event_id: str) -> TransactionSet:
        """
        Collect all transactions for an event's ticket types.

        Returns:
            TransactionSet; a channel that could not be read contributes nothing
            and is listed in degraded_sources (or raises ChannelFetchError in
            strict mode).
        """
        result = TransactionSet()
        try:
            ticket_types = await asyncio.to_thread(self.fetch_ticket_types, event_id)
        except BackendError as exc:
            logger.error("Failed to read ticket types for event %s: %s", event_id, exc)
            result.degraded_sources.append("tickets")
            metrics.record_degraded_fetch("tickets")
            return result

        if not ticket_types:
            logger.info("No ticket types found for event %s", event_id)
            return result

        result.ticket_types = {t.id: t for t in ticket_types}
        ticket_ids = list(result.ticket_types)

        branches = await asyncio.gather(
            *(
                asyncio.to_thread(self._fetch_channel_guarded, channel, ticket_ids)
                for channel in Channel
            )
        )

        merged: List[Transaction] = []
        for channel, transactions, error in branches:
            if error is not None:
                if self.strict:
                    raise ChannelFetchError(channel, error)
                result.degraded_sources.append(f"channel:{channel.value}")
                metrics.record_degraded_fetch(f"channel:{channel.value}")
            merged.extend(transactions)

        result.transactions = list(self._build_index(merged).values())
        logger.info(
            "Aggregated %d transactions for event %s (%s)",
            len(result.transactions),
            event_id,
            ", ".join(
                f"{channel.value}={len(transactions)}"
                for channel, transactions, _ in branches
            ),
        )
        return result
