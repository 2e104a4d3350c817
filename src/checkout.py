"""
Server-side checkout: ticket totals and the payment widget's integrity hash.

Prices always come from the ticket table, never from the client. The integrity
hash is SHA-256 over order id + amount + currency + secret key, hex encoded.
"""

from __future__ import annotations

import hashlib
import math
import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
import structlog

from backend_client import BackendClient, eq_filter, in_filter
from models import CheckoutData, CheckoutLine, CustomerData, TicketType

logger = structlog.get_logger()


class CheckoutError(Exception):
    """The checkout cannot be built: nothing selected, tickets unknown, or no secret."""


def integrity_hash(order_id: str, amount: int, currency: str, secret_key: str) -> str:
    message = f"{order_id}{amount}{currency}{secret_key}"
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def build_order_id(user_id: str, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"ORDER-{user_id}-{now_ms}"


def build_checkout_lines(
    tickets: List[TicketType],
    selections: Dict[str, int],
    variable_fee_rate: float,
    tax_rate: float = 0.19,
) -> List[CheckoutLine]:
    """One line per selected ticket type, with per-unit fee and tax."""
    lines = []
    for ticket in tickets:
        quantity = selections.get(ticket.id, 0)
        if quantity <= 0:
            continue
        unit_fee = ticket.price * variable_fee_rate
        lines.append(
            CheckoutLine(
                ticket_id=ticket.id,
                name=ticket.name,
                price=ticket.price,
                quantity=quantity,
                unit_variable_fee=unit_fee,
                unit_tax=unit_fee * tax_rate,
            )
        )
    return lines


def build_checkout(
    tickets: List[TicketType],
    selections: Dict[str, int],
    variable_fee_rate: float,
    user: Dict[str, Any],
    secret_key: Optional[str],
    currency: str = "COP",
    tax_rate: float = 0.19,
    now_ms: Optional[int] = None,
) -> CheckoutData:
    """
    Compute totals and sign the order for the hosted payment widget.

    The amount is the ceiling of subtotal + service fee + tax on the fee.
    """
    lines = build_checkout_lines(tickets, selections, variable_fee_rate, tax_rate)
    subtotal = sum(line.price * line.quantity for line in lines)
    if not lines or subtotal == 0:
        raise CheckoutError("No tickets selected")
    if not secret_key:
        raise CheckoutError("Payment configuration unavailable")

    service_fee = sum(line.unit_variable_fee * line.quantity for line in lines)
    tax = sum(line.unit_tax * line.quantity for line in lines)
    amount = math.ceil(subtotal + service_fee + tax)
    order_id = build_order_id(user["id"], now_ms)

    if len(lines) > 1:
        description = f"Purchase of {len(lines)} ticket types"
    else:
        description = f"Purchase of {lines[0].name}"

    return CheckoutData(
        order_id=order_id,
        amount=amount,
        currency=currency,
        description=description,
        integrity_hash=integrity_hash(order_id, amount, currency, secret_key),
        subtotal=subtotal,
        service_fee=service_fee,
        tax=tax,
        lines=lines,
        customer_data=_customer_data(user),
    )


def _customer_data(user: Dict[str, Any]) -> CustomerData:
    metadata = user.get("user_metadata") or {}
    email = user.get("email") or ""
    full_name = f"{metadata.get('name') or ''} {metadata.get('lastName') or ''}".strip()
    return CustomerData(
        email=email,
        full_name=full_name or email or "User",
        phone=metadata.get("phone") or "",
        document_number=metadata.get("document_id") or "",
        document_type=metadata.get("document_type_id") or "CC",
    )


class CheckoutService:
    """Creates web transactions for a selection and returns signed checkout data."""

    def __init__(
        self,
        client: BackendClient,
        secret_key: Optional[str],
        currency: str = "COP",
        tax_rate: float = 0.19,
    ) -> None:
        self.client = client
        self.secret_key = secret_key
        self.currency = currency
        self.tax_rate = tax_rate

    def fetch_tickets(self, event_id: str, ticket_ids: List[str]) -> List[TicketType]:
        rows = self.client.select(
            "tickets",
            "id,name,price,event_id",
            {"id": in_filter(ticket_ids), "event_id": eq_filter(event_id)},
        )
        tickets = []
        for row in rows:
            try:
                tickets.append(TicketType(**row))
            except ValidationError as e:
                logger.warning("Skipping invalid ticket record", event_id=event_id, error=str(e))
        return tickets

    def create_checkout(
        self,
        event_id: str,
        selections: Dict[str, int],
        variable_fee_rate: float,
        user: Dict[str, Any],
        seller_uid: Optional[str] = None,
    ) -> CheckoutData:
        """
        Price the selection server-side, record one web transaction per ticket
        type, and return the data the payment widget needs.

        Raises:
            CheckoutError: for an unusable selection or a rejected transaction
            BackendError: when the backend cannot be reached
        """
        tickets = self.fetch_tickets(event_id, list(selections))
        if not tickets:
            raise CheckoutError("Tickets not found")

        checkout = build_checkout(
            tickets,
            selections,
            variable_fee_rate,
            user,
            self.secret_key,
            currency=self.currency,
            tax_rate=self.tax_rate,
        )

        for line in checkout.lines:
            response = self.client.rpc(
                "create_transaction_web",
                {
                    "p_order": checkout.order_id,
                    "p_user_id": user["id"],
                    "p_seller_uid": seller_uid,
                    "p_ticket_id": line.ticket_id,
                    "p_price": line.price,
                    "p_variable_fee": line.unit_variable_fee,
                    "p_tax": line.unit_tax,
                    "p_quantity": line.quantity,
                    "p_total": checkout.amount,
                },
            )
            if isinstance(response, dict) and "code" in response:
                logger.error("Transaction rejected", order_id=checkout.order_id, response=response)
                raise CheckoutError(response.get("msg") or "Transaction validation error")

        logger.info(
            "Checkout created",
            order_id=checkout.order_id,
            amount=checkout.amount,
            lines=len(checkout.lines),
        )
        return checkout

