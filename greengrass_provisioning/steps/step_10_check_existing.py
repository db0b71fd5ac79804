from __future__ import annotations

import logging
from typing import Optional

from ..detector import ProvisioningDetector
from ..errors import DetectionError
from ..pipeline import RunContext, StepOutcome
from ..status import Phase

logger = logging.getLogger(__name__)


class CheckExistingStep:
    step_id = "10_check_existing"
    phase = Phase.CHECKING_PROVISIONING

    def run(self, ctx: RunContext) -> Optional[StepOutcome]:
        try:
            status = ProvisioningDetector(ctx.root).detect()
        except OSError as e:
            raise DetectionError("Failed to inspect existing installation", str(e)) from e
        ctx.detection = status

        if not status.is_provisioned:
            return None

        if ctx.force:
            logger.warning(
                "Greengrass is already provisioned as %s; re-provisioning because of --force",
                status.identity_name,
            )
            return None

        logger.info("Greengrass is already provisioned for thing: %s", status.identity_name)
        return StepOutcome(
            phase=Phase.ALREADY_PROVISIONED,
            message=f"Already provisioned as {status.identity_name}",
        )
