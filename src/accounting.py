"""
Accounting rollups over paid transactions: revenue, fees, tax, per channel and per month.
"""

from __future__ import annotations

from typing import List

import pandas as pd

from models import AccountingSummary, Channel, MonthlyRevenue, Transaction


def summarize_transactions(
    transactions: List[Transaction], paid_status: str = "PAID WITH QR"
) -> AccountingSummary:
    """
    Roll up paid transactions.

    Fees and tax are stored per unit, so they are multiplied by quantity.
    Months are keyed YYYY-MM and listed oldest first; rows without a creation
    timestamp count toward totals but not toward any month.
    """
    paid = [t for t in transactions if t.status == paid_status]
    if not paid:
        return AccountingSummary()

    df = pd.DataFrame(
        [
            {
                "channel": t.channel.value,
                "total": t.total or 0,
                "quantity": t.quantity or 0,
                "fees": (t.variable_fee or 0) * (t.quantity or 0),
                "tax": (t.tax or 0) * (t.quantity or 0),
                "created_at": t.created_at,
            }
            for t in paid
        ]
    )

    by_channel = df.groupby("channel")["total"].sum()
    revenue_by_channel = {
        channel.value: float(by_channel.get(channel.value, 0.0)) for channel in Channel
    }

    dated = df.dropna(subset=["created_at"]).copy()
    monthly: List[MonthlyRevenue] = []
    if not dated.empty:
        dated["month"] = pd.to_datetime(dated["created_at"], utc=True).dt.strftime("%Y-%m")
        grouped = dated.groupby("month").agg(
            revenue=("total", "sum"), transactions=("total", "size")
        )
        monthly = [
            MonthlyRevenue(
                month=month, revenue=float(row.revenue), transactions=int(row.transactions)
            )
            for month, row in grouped.sort_index().iterrows()
        ]

    return AccountingSummary(
        total_revenue=float(df["total"].sum()),
        tickets_sold=int(df["quantity"].sum()),
        total_fees=float(df["fees"].sum()),
        total_tax=float(df["tax"].sum()),
        transaction_count=len(df),
        revenue_by_channel=revenue_by_channel,
        monthly=monthly,
    )
