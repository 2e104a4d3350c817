"""
models.py

Defines all core data models for the Ticketing Access Control Reconciliation System.
Models are built using Pydantic for validation, type safety, and serialization.
Backend rows are loosely shaped, so most row fields are Optional and defaulted.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


UNKNOWN = "Unknown"
UNNAMED = "Unnamed"


# -----------------------------------------------------------------------------
# 1. System Configuration Model
# -----------------------------------------------------------------------------
class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables or .env files.

    Centralizes backend endpoints, batching limits, checkout and reporting settings.
    """

    # Backend Configuration
    SUPABASE_URL: str = Field(default="", description="Base URL of the hosted backend")
    SUPABASE_KEY: str = Field(default="", description="Backend API key")
    SUPABASE_ACCESS_TOKEN: Optional[str] = Field(
        None, description="Access token of the acting user (for mutations)"
    )
    REQUEST_TIMEOUT: int = Field(default=30, description="HTTP timeout in seconds")

    # Fetch Limits
    TRANSACTION_PAGE_SIZE: int = Field(
        default=1000, description="Rows per page when ranging over a ledger or a QR code batch"
    )
    QR_BATCH_SIZE: int = Field(
        default=100, description="Transaction ids per QR code lookup"
    )
    PROFILE_BATCH_SIZE: int = Field(
        default=100, description="User ids per profile lookup"
    )
    STRICT_CHANNEL_FETCH: bool = Field(
        default=False,
        description="Abort reconciliation when a channel ledger cannot be read",
    )
    PAID_WITH_QR_STATUS: str = Field(
        default="PAID WITH QR", description="Status of paid transactions with codes"
    )

    # Checkout Configuration
    PAYMENT_SECRET_KEY: Optional[str] = Field(
        None, description="Secret used to sign checkout integrity hashes"
    )
    CHECKOUT_CURRENCY: str = Field(default="COP", description="Checkout currency")
    SERVICE_TAX_RATE: float = Field(
        default=0.19, description="Tax rate applied on the service fee"
    )

    # Application Configuration
    REPORT_OUTPUT_DIR: Path = Field(
        default=Path("local_reports"), description="Directory for report outputs"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    METRICS_PORT: int = Field(default=8000, description="Prometheus metrics port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def rest_url(self) -> str:
        """REST endpoint root of the backend."""
        return f"{self.SUPABASE_URL.rstrip('/')}/rest/v1"

    @property
    def auth_url(self) -> str:
        """Auth endpoint root of the backend."""
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1"


# -----------------------------------------------------------------------------
# 2. Backend Row Models
# -----------------------------------------------------------------------------
class Channel(str, Enum):
    """Purchase channel, inferred from the ledger a transaction was read from."""

    APP = "app"
    WEB = "web"
    CASH = "cash"

    @property
    def table_name(self) -> str:
        return CHANNEL_TABLES[self]


CHANNEL_TABLES: Dict[Channel, str] = {
    Channel.APP: "transactions",
    Channel.WEB: "transactions_web",
    Channel.CASH: "transactions_cash",
}


class TicketType(BaseModel):
    """A ticket type sold for one event."""

    id: str = Field(..., description="Ticket type identifier")
    name: str = Field(default="", description="Display name")
    price: float = Field(default=0, description="Unit price")
    event_id: Optional[str] = Field(None, description="Owning event")


class Transaction(BaseModel):
    """
    A purchase of N units of one ticket type, read from one channel ledger.

    `channel` is not stored in the backend; it is attached when the row is read.
    """

    id: str = Field(..., description="Transaction identifier")
    ticket_id: Optional[str] = Field(None, description="Purchased ticket type")
    user_id: Optional[str] = Field(None, description="Buyer")
    order_id: Optional[str] = Field(None, description="Order reference")
    quantity: Optional[int] = Field(None, description="Units purchased")
    status: Optional[str] = Field(None, description="Transaction status")
    total: Optional[float] = Field(None, description="Total charged")
    price: Optional[float] = Field(None, description="Unit price at purchase")
    variable_fee: Optional[float] = Field(None, description="Service fee per unit")
    tax: Optional[float] = Field(None, description="Tax on the service fee per unit")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    channel: Channel = Field(..., description="Ledger the row was read from")

    @property
    def expected_codes(self) -> int:
        """Codes that should exist; a zero or missing quantity counts as one."""
        return self.quantity or 1


class QRCode(BaseModel):
    """A single admission credential tied to one transaction."""

    id: str = Field(..., description="QR code identifier")
    transaction_id: str = Field(..., description="Owning transaction")
    user_id: Optional[str] = Field(None, description="Current ticket holder")
    created_at: Optional[datetime] = Field(None, description="Issue timestamp")
    scan: Optional[bool] = Field(None, description="Scanned flag")
    scanner_id: Optional[str] = Field(None, description="Staff member who scanned")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
    apple: Optional[bool] = Field(None, description="Apple Wallet pass issued")
    google: Optional[bool] = Field(None, description="Google Wallet pass issued")


class Profile(BaseModel):
    """A user or staff identity."""

    id: str = Field(..., description="Profile identifier")
    name: Optional[str] = Field(None, description="First name")
    lastName: Optional[str] = Field(None, description="Last name")
    email: Optional[str] = Field(None, description="Email address")

    @property
    def display_name(self) -> str:
        full_name = f"{self.name or ''} {self.lastName or ''}".strip()
        return full_name or UNNAMED


class Identity(BaseModel):
    """Resolved display identity; placeholders when the profile is missing."""

    name: str = Field(default=UNKNOWN)
    email: str = Field(default=UNKNOWN)


# -----------------------------------------------------------------------------
# 3. Reconciliation Models
# -----------------------------------------------------------------------------
class DeficientTransaction(BaseModel):
    """A paid transaction with fewer issued codes than units purchased."""

    transaction: Transaction
    expected: int = Field(..., description="Codes that should exist")
    actual: int = Field(..., description="Codes found")

    @property
    def deficit(self) -> int:
        return self.expected - self.actual


class ReconciliationStats(BaseModel):
    """Summary statistics of one access control reconciliation."""

    total_transactions: int = 0
    paid_transactions: int = 0
    expected_qrs: int = 0
    actual_qrs: int = 0
    paid_actual_qrs: int = 0
    missing_qrs: int = 0
    surplus_qrs: int = 0
    scanned_qrs: int = 0
    apple_wallet: int = 0
    google_wallet: int = 0
    transferred_tickets: int = 0
    transactions_with_missing_qr: int = 0
    missing_by_channel: Dict[str, int] = Field(
        default_factory=lambda: {channel.value: 0 for channel in Channel}
    )

    @property
    def coverage(self) -> float:
        """Share of expected codes that were issued, capped at 1."""
        if self.expected_qrs == 0:
            return 1.0
        return min(1.0, self.paid_actual_qrs / self.expected_qrs)


class ReconciliationOutcome(BaseModel):
    """Raw output of the reconciliation engine, before presentation."""

    deficient: List[DeficientTransaction] = Field(default_factory=list)
    qr_counts: Dict[str, int] = Field(default_factory=dict)
    stats: ReconciliationStats = Field(default_factory=ReconciliationStats)


# -----------------------------------------------------------------------------
# 4. Presentation Rows
# -----------------------------------------------------------------------------
class QRLedgerRow(BaseModel):
    """One issued code, flattened for display."""

    id: str
    transaction_id: str
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    scan: bool = False
    scanner_id: Optional[str] = None
    updated_at: Optional[datetime] = None
    apple: bool = False
    google: bool = False
    user_name: str = UNKNOWN
    user_email: str = UNKNOWN
    scanner_name: Optional[str] = None
    scanner_email: Optional[str] = None
    ticket_name: str = UNKNOWN
    source: str = "unknown"
    order_id: Optional[str] = None


class DeficiencyRow(BaseModel):
    """One under-issued transaction, flattened for display."""

    id: str
    transaction_id: str
    user_id: Optional[str] = None
    user_name: str = UNKNOWN
    user_email: str = UNKNOWN
    ticket_name: str = UNKNOWN
    quantity: int
    actual_qrs: int
    missing_qrs: int
    status: str = "UNKNOWN"
    source: str = "unknown"
    order_id: Optional[str] = None
    created_at: Optional[datetime] = None
    total: float = 0


class Page(BaseModel):
    """A page of ledger rows."""

    data: List[Any] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 50
    total_pages: int = 0


class AccessControlResult(BaseModel):
    """
    Result of the access control read operation for one event.

    `degraded_sources` names every sub-fetch that failed and was treated as empty,
    so an empty or short ledger can be told apart from a complete one.
    """

    event_id: str
    qr_codes: List[QRLedgerRow] = Field(default_factory=list)
    transactions_missing_qr: List[DeficiencyRow] = Field(default_factory=list)
    stats: ReconciliationStats = Field(default_factory=ReconciliationStats)
    degraded_sources: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_complete(self) -> bool:
        return not self.degraded_sources

    def filter_qr_codes(
        self,
        scanned: Optional[bool] = None,
        channel: Optional[Channel] = None,
        search: Optional[str] = None,
    ) -> List[QRLedgerRow]:
        """Filter the QR ledger by scanned flag, channel and a free-text term."""
        rows = self.qr_codes
        if scanned is not None:
            rows = [row for row in rows if row.scan == scanned]
        if channel is not None:
            rows = [row for row in rows if row.source == Channel(channel).value]
        if search:
            term = search.strip().lower()
            rows = [
                row
                for row in rows
                if any(
                    term in (value or "").lower()
                    for value in (
                        row.id,
                        row.transaction_id,
                        row.order_id,
                        row.user_name,
                        row.user_email,
                    )
                )
            ]
        return rows

    def find_qr_code(self, qr_id: str) -> Optional[QRLedgerRow]:
        for row in self.qr_codes:
            if row.id == qr_id:
                return row
        return None


class ScanToggleResult(BaseModel):
    """Outcome of flipping a code's scanned flag."""

    success: bool
    new_status: Optional[bool] = None
    error: Optional[str] = None


# -----------------------------------------------------------------------------
# 5. Checkout Models
# -----------------------------------------------------------------------------
class CustomerData(BaseModel):
    email: str = ""
    full_name: str = ""
    phone: str = ""
    dial_code: str = "+57"
    document_number: str = ""
    document_type: str = "CC"


class CheckoutLine(BaseModel):
    """One ticket type within a checkout, with per-unit fee and tax."""

    ticket_id: str
    name: str
    price: float
    quantity: int
    unit_variable_fee: float
    unit_tax: float


class CheckoutData(BaseModel):
    """Everything the hosted payment widget needs, computed server-side."""

    order_id: str
    amount: int
    currency: str
    description: str
    integrity_hash: str
    subtotal: float
    service_fee: float
    tax: float
    lines: List[CheckoutLine] = Field(default_factory=list)
    customer_data: CustomerData = Field(default_factory=CustomerData)


# -----------------------------------------------------------------------------
# 6. Accounting Models
# -----------------------------------------------------------------------------
class MonthlyRevenue(BaseModel):
    month: str
    revenue: float = 0
    transactions: int = 0


class AccountingSummary(BaseModel):
    """Revenue rollup over paid transactions."""

    total_revenue: float = 0
    tickets_sold: int = 0
    total_fees: float = 0
    total_tax: float = 0
    transaction_count: int = 0
    revenue_by_channel: Dict[str, float] = Field(
        default_factory=lambda: {channel.value: 0.0 for channel in Channel}
    )
    monthly: List[MonthlyRevenue] = Field(default_factory=list)
