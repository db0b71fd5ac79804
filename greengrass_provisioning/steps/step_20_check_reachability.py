from __future__ import annotations

import logging
from typing import Optional

from ..errors import ConnectivityError
from ..pipeline import EXIT_NO_CONNECTIVITY, RunContext, StepOutcome
from ..status import Phase

logger = logging.getLogger(__name__)


class CheckReachabilityStep:
    step_id = "20_check_reachability"
    phase = Phase.CHECKING_CONNECTIVITY

    def run(self, ctx: RunContext) -> Optional[StepOutcome]:
        try:
            result = ctx.probe.check_overall()
        except (OSError, ValueError) as e:
            raise ConnectivityError("Connectivity check failed", str(e)) from e
        ctx.reachability = result

        if result.connected:
            logger.info("Cloud endpoints reachable (tested: %s)", ", ".join(result.tested_endpoints))
            return None

        logger.error("No internet connectivity: %s", result.error)
        return StepOutcome(
            phase=Phase.NO_CONNECTIVITY,
            message=result.error,
            exit_code=EXIT_NO_CONNECTIVITY,
        )
