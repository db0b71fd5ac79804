from __future__ import annotations

import logging
from typing import Optional

from ..errors import MaterializationError
from ..pipeline import RunContext, StepOutcome
from ..status import Phase

logger = logging.getLogger(__name__)


class GenerateConfigStep:
    step_id = "40_generate_config"
    phase = Phase.GENERATING_CONFIG

    def run(self, ctx: RunContext) -> Optional[StepOutcome]:
        if ctx.record is None:
            raise RuntimeError("device record missing; 30_read_record must run first")

        artifacts = ctx.materializer.materialize(ctx.record)
        ctx.artifacts = artifacts
        if not artifacts.success:
            raise MaterializationError("Failed to generate configuration", artifacts.error)

        logger.info("Configuration written to %s", artifacts.config_file_path)
        return None
