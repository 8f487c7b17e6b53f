import asyncio
import json
import logging
from datetime import datetime, timezone

import pytest

from datastore.collections import CappedCollection, ConnectionState
from services.errors import MessageValidationError
from services.ingestion import IngestionListener

NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def _listener(max_documents: int = 100) -> IngestionListener:
    state = ConnectionState()
    raw = CappedCollection(
        name="raw",
        time_field="timestamp",
        max_documents=max_documents,
        max_bytes=1_000_000,
        state=state,
    )
    return IngestionListener(raw=raw, state=state, clock=lambda: NOW)


def _payload(**fields) -> bytes:
    return json.dumps(fields).encode("utf-8")


def test_accepted_message_adds_one_reading_with_posted_timestamp() -> None:
    listener = _listener()

    reading = asyncio.run(
        listener.handle_message(
            _payload(temperature="21.5", humidity=40, timestamp="2024-03-01T08:15:00Z")
        )
    )

    assert reading is not None
    rows = listener.raw.scan()
    assert rows == [
        {
            "temperature": 21.5,
            "humidity": 40.0,
            "timestamp": datetime(2024, 3, 1, 8, 15, tzinfo=timezone.utc),
        }
    ]


def test_missing_timestamp_defaults_to_clock() -> None:
    listener = _listener()

    asyncio.run(listener.handle_message(_payload(temperature=20, humidity=50)))

    [row] = listener.raw.scan()
    assert row["timestamp"] == NOW


@pytest.mark.parametrize(
    "payload",
    [
        _payload(humidity=50),
        _payload(temperature=20),
        _payload(temperature=None, humidity=50),
        _payload(temperature="warm", humidity=50),
        _payload(temperature=True, humidity=50),
        _payload(temperature="nan", humidity=50),
        b"[1, 2, 3]",
        b"not json",
        b"\xff\xfe",
    ],
)
def test_invalid_messages_add_no_rows(payload: bytes, caplog) -> None:
    listener = _listener()

    with caplog.at_level(logging.WARNING, logger="services.ingestion"):
        result = asyncio.run(listener.handle_message(payload))

    assert result is None
    assert len(listener.raw) == 0
    assert "Dropping invalid sensor message" in caplog.text


def test_parse_message_names_missing_fields() -> None:
    with pytest.raises(MessageValidationError, match="missing temperature and humidity"):
        _listener().parse_message(_payload(timestamp="2024-01-01T00:00:00Z"))


def test_unparsable_timestamp_is_stored_without_time() -> None:
    listener = _listener()

    asyncio.run(
        listener.handle_message(_payload(temperature=20, humidity=50, timestamp="yesterday"))
    )

    [row] = listener.raw.scan()
    assert row["timestamp"] is None
    assert listener.raw.find_latest() is None


def test_messages_are_skipped_while_store_is_down(caplog) -> None:
    listener = _listener()
    listener.state.mark_down()

    with caplog.at_level(logging.WARNING, logger="services.ingestion"):
        result = asyncio.run(listener.handle_message(_payload(temperature=20, humidity=50)))

    assert result is None
    assert "Store not connected" in caplog.text
    listener.state.mark_up()
    assert len(listener.raw) == 0


def test_store_failure_abandons_message(caplog) -> None:
    listener = _listener()

    def failing_insert(document):
        raise OSError("disk full")

    listener.raw.insert = failing_insert  # type: ignore[method-assign]

    with caplog.at_level(logging.ERROR, logger="services.ingestion"):
        result = asyncio.run(listener.handle_message(_payload(temperature=20, humidity=50)))

    assert result is None
    assert "disk full" in caplog.text


class _ListSource:
    def __init__(self, payloads) -> None:
        self.payloads = payloads

    async def messages(self):
        for payload in self.payloads:
            yield payload


def test_run_processes_messages_in_arrival_order_with_eviction() -> None:
    listener = _listener(max_documents=2)
    source = _ListSource(
        [
            _payload(temperature=1, humidity=10, timestamp="2024-03-01T09:00:00Z"),
            _payload(humidity=10),
            _payload(temperature=2, humidity=20, timestamp="2024-03-01T09:01:00Z"),
            _payload(temperature=3, humidity=30, timestamp="2024-03-01T09:02:00Z"),
        ]
    )

    asyncio.run(listener.run(source))

    assert [row["temperature"] for row in listener.raw.scan()] == [2.0, 3.0]


@pytest.mark.parametrize("timestamp", ["", 0])
def test_empty_timestamp_defaults_to_clock(timestamp) -> None:
    listener = _listener()

    asyncio.run(
        listener.handle_message(_payload(temperature=20, humidity=50, timestamp=timestamp))
    )

    [row] = listener.raw.scan()
    assert row["timestamp"] == NOW


def test_numeric_timestamp_is_read_as_epoch_milliseconds() -> None:
    listener = _listener()

    asyncio.run(
        listener.handle_message(
            _payload(temperature=20, humidity=50, timestamp=1_709_280_900_000)
        )
    )

    [row] = listener.raw.scan()
    assert row["timestamp"] == datetime(2024, 3, 1, 8, 15, tzinfo=timezone.utc)


def test_failed_write_only_drops_the_current_message(tmp_path) -> None:
    path = tmp_path / "raw.jsonl"
    state = ConnectionState()
    raw = CappedCollection(
        name="raw",
        time_field="timestamp",
        max_documents=100,
        max_bytes=1_000_000,
        persistence_path=path,
        state=state,
    )
    listener = IngestionListener(raw=raw, state=state, clock=lambda: NOW)
    path.mkdir()

    first = asyncio.run(listener.handle_message(_payload(temperature=1, humidity=10)))
    path.rmdir()
    second = asyncio.run(listener.handle_message(_payload(temperature=2, humidity=20)))

    assert first is None
    assert second is not None
    assert [row["temperature"] for row in raw.scan()] == [2.0]
    assert len(path.read_text().splitlines()) == 1
