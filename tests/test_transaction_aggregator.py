import asyncio

import pytest

from conftest import FakeBackend, transaction_row
from models import Channel
from transaction_aggregator import ChannelFetchError, TransactionAggregator


class TestTransactionAggregator:
    @pytest.fixture
    def aggregator(self, backend):
        return TransactionAggregator(backend, page_size=2)

    def test_merges_all_channels_and_tags_source(self, backend, aggregator):
        backend.add("transactions", transaction_row("a1"))
        backend.add("transactions_web", transaction_row("w1"), transaction_row("w2"))
        backend.add("transactions_cash", transaction_row("c1"))

        result = asyncio.run(aggregator.aggregate("E"))

        channels = {t.id: t.channel for t in result.transactions}
        assert channels == {
            "a1": Channel.APP,
            "w1": Channel.WEB,
            "w2": Channel.WEB,
            "c1": Channel.CASH,
        }
        assert result.degraded_sources == []
        assert result.ticket_types["T1"].name == "General"

    def test_pages_until_short_page(self, backend, aggregator):
        backend.add("transactions_web", *[transaction_row(f"w{i}") for i in range(5)])

        transactions = aggregator.fetch_channel(Channel.WEB, ["T1"])

        assert [t.id for t in transactions] == ["w0", "w1", "w2", "w3", "w4"]
        offsets = [
            call["offset"] for call in backend.select_calls
            if call["table"] == "transactions_web"
        ]
        assert offsets == [0, 2, 4]

    def test_exact_multiple_of_page_size_fetches_one_empty_page(self, backend, aggregator):
        backend.add("transactions_web", *[transaction_row(f"w{i}") for i in range(4)])

        transactions = aggregator.fetch_channel(Channel.WEB, ["T1"])

        assert len(transactions) == 4
        assert len(backend.select_calls) == 3

    def test_filters_by_event_ticket_types(self, backend, aggregator):
        backend.add(
            "transactions_web",
            transaction_row("mine", ticket_id="T1"),
            transaction_row("other", ticket_id="T-OTHER-EVENT"),
        )
        result = asyncio.run(aggregator.aggregate("E"))
        assert [t.id for t in result.transactions] == ["mine"]

    def test_includes_every_status(self, backend, aggregator):
        backend.add(
            "transactions",
            transaction_row("paid"),
            transaction_row("pending", status="PENDING"),
        )
        result = asyncio.run(aggregator.aggregate("E"))
        assert {t.id for t in result.transactions} == {"paid", "pending"}

    def test_failed_channel_degrades_to_empty(self, backend, aggregator):
        backend.add("transactions", transaction_row("a1"))
        backend.add("transactions_web", transaction_row("w1"))
        backend.fail_tables.add("transactions_web")

        result = asyncio.run(aggregator.aggregate("E"))

        assert [t.id for t in result.transactions] == ["a1"]
        assert result.degraded_sources == ["channel:web"]

    def test_failed_channel_raises_in_strict_mode(self, backend):
        backend.fail_tables.add("transactions_cash")
        aggregator = TransactionAggregator(backend, page_size=2, strict=True)

        with pytest.raises(ChannelFetchError) as exc_info:
            asyncio.run(aggregator.aggregate("E"))
        assert exc_info.value.channel == Channel.CASH

    def test_no_ticket_types_short_circuits(self, aggregator):
        empty = FakeBackend()
        aggregator.client = empty

        result = asyncio.run(aggregator.aggregate("E"))

        assert result.transactions == []
        assert result.degraded_sources == []
        assert [c["table"] for c in empty.select_calls] == ["tickets"]

    def test_ticket_fetch_failure_returns_empty(self, backend, aggregator):
        backend.fail_tables.add("tickets")
        result = asyncio.run(aggregator.aggregate("E"))
        assert result.transactions == []
        assert result.degraded_sources == ["tickets"]

    def test_duplicate_rows_kept_once(self, backend, aggregator):
        backend.add("transactions", transaction_row("dup"), transaction_row("dup", quantity=9))
        result = asyncio.run(aggregator.aggregate("E"))
        assert len(result.transactions) == 1
        assert result.transactions[0].quantity == 1

    def test_invalid_rows_skipped(self, backend, aggregator):
        backend.add("transactions", {"ticket_id": "T1", "status": "PAID WITH QR"})
        backend.add("transactions", transaction_row("ok"))
        result = asyncio.run(aggregator.aggregate("E"))
        assert [t.id for t in result.transactions] == ["ok"]

    def test_ticket_name_lookup(self, backend, aggregator):
        result = asyncio.run(aggregator.aggregate("E"))
        assert result.ticket_name("T1") == "General"
        assert result.ticket_name("missing") == "Unknown"
        assert result.ticket_name(None) == "Unknown"

    def test_rejects_non_positive_page_size(self, backend):
        with pytest.raises(ValueError):
            TransactionAggregator(backend, page_size=0)
