from __future__ import annotations

import logging
from typing import Optional

from ..errors import ActivationError
from ..pipeline import RunContext, StepOutcome
from ..status import Phase

logger = logging.getLogger(__name__)

BAND_START = 80
BAND_END = 99


def band_progress(pct: int) -> int:
    """Map activation's own 0-100 onto the PROVISIONING slice of the status bar."""

    pct = max(0, min(100, int(pct)))
    return BAND_START + (BAND_END - BAND_START) * pct // 100


class ActivateStep:
    step_id = "50_activate"
    phase = Phase.PROVISIONING

    def run(self, ctx: RunContext) -> Optional[StepOutcome]:
        if ctx.record is None or ctx.artifacts is None:
            raise RuntimeError("generated artifacts missing; 40_generate_config must run first")

        def on_progress(pct: int, message: str) -> None:
            ctx.recorder.report(Phase.PROVISIONING, message, band_progress(pct))

        result = ctx.activator.activate(ctx.record, ctx.artifacts, progress=on_progress)
        if not result.success:
            raise ActivationError("Provisioning failed", result.error)

        logger.info("Greengrass service %s is running", result.service_name)
        return None
