from __future__ import annotations

import logging
from typing import List, Optional

from ..errors import RecordError
from ..pipeline import RunContext, StepOutcome
from ..records import DeviceRecord
from ..status import Phase

logger = logging.getLogger(__name__)


class ReadRecordStep:
    step_id = "30_read_record"
    phase = Phase.READING_DATABASE

    def run(self, ctx: RunContext) -> Optional[StepOutcome]:
        store = ctx.store
        if not store.is_connected() and not store.connect():
            raise RecordError("Failed to connect to database", store.last_error)

        record = self._lookup(ctx)
        if record is None:
            tried: List[str] = [ctx.device_id] if ctx.device_id else ctx.identifiers + [ctx.default_device_id]
            raise RecordError("No device configuration found in database", "tried: " + ", ".join(tried))

        missing = record.missing_fields()
        if missing:
            raise RecordError(
                f"Device record {record.device_id} is incomplete",
                "missing " + ", ".join(missing),
            )

        logger.info("Found configuration for device: %s (Thing: %s)", record.device_id, record.identity_name)
        ctx.record = record
        return None

    def _lookup(self, ctx: RunContext) -> Optional[DeviceRecord]:
        # A matched but unreadable record raises RecordError and ends the search here.
        store = ctx.store

        if ctx.device_id:
            logger.info("Looking up configuration for device: %s", ctx.device_id)
            return store.get_by_primary_id(ctx.device_id)

        for identifier in ctx.identifiers:
            logger.info("Looking up configuration for device identifier: %s", identifier)
            record = store.get_by_secondary_identifier(identifier)
            if record is not None:
                return record

        logger.info("Falling back to device id: %s", ctx.default_device_id)
        return store.get_by_primary_id(ctx.default_device_id)
