"""Turns sensor-topic payloads into stored raw readings."""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime
from typing import Any, Optional

from datastore.collections import ConnectionState, DocumentCollection
from models.records import SensorReading
from services.errors import DependencyError, MessageValidationError
from services.transport import MessageSource
from services.windows import Clock, from_epoch_millis, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("temperature", "humidity")


class IngestionListener:
    """Validates inbound messages and writes each accepted one immediately."""

    def __init__(
        self,
        raw: DocumentCollection,
        state: ConnectionState,
        clock: Clock = utc_now,
    ) -> None:
        self.raw = raw
        self.state = state
        self.clock = clock

    def parse_message(self, payload: bytes) -> SensorReading:
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MessageValidationError("payload is not valid JSON") from exc

        if not isinstance(data, dict):
            raise MessageValidationError("payload is not a JSON object")

        missing = [name for name in _REQUIRED_FIELDS if data.get(name) is None]
        if missing:
            raise MessageValidationError(f"missing {' and '.join(missing)}")

        temperature = _coerce_float(data["temperature"], "temperature")
        humidity = _coerce_float(data["humidity"], "humidity")

        return SensorReading(
            temperature=temperature,
            humidity=humidity,
            timestamp=self._read_timestamp(data.get("timestamp")),
        )

    def _read_timestamp(self, value: Any) -> Optional[datetime]:
        # Empty values (including 0 and "") mean "not sent". Timestamps are
        # otherwise trusted as sent; one that cannot be read is kept as missing.
        if not value:
            return self.clock()
        try:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return from_epoch_millis(value)
            return parse_timestamp(str(value))
        except ValueError:
            return None

    async def handle_message(self, payload: bytes) -> Optional[SensorReading]:
        if not self.state.connected:
            logger.warning("Store not connected, skipping message")
            return None

        try:
            reading = self.parse_message(payload)
        except MessageValidationError as exc:
            logger.warning("Dropping invalid sensor message", extra={"reason": str(exc)})
            return None

        try:
            self.raw.insert(reading.to_document())
        except Exception as exc:
            error = DependencyError(f"raw store write failed: {exc}")
            logger.error("Error storing sensor reading: %s", error, exc_info=exc)
            return None

        logger.debug("Raw reading saved: %s", reading)
        return reading

    async def run(self, source: MessageSource) -> None:
        """Consume ``source`` forever, one message at a time in arrival order."""
        async for payload in source.messages():
            await self.handle_message(payload)


def _coerce_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise MessageValidationError(f"{name} is not numeric")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise MessageValidationError(f"{name} is not numeric") from exc
    if not math.isfinite(number):
        raise MessageValidationError(f"{name} is not finite")
    return number
