from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from .activation import Activator
from .detector import ProvisioningStatus
from .errors import ProvisioningError
from .lib.net import ReachabilityProbe, ReachabilityResult
from .materializer import ConfigMaterializer, GeneratedArtifacts
from .records import DeviceRecord, RecordStore
from .status import Phase, StatusRecorder

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NO_CONNECTIVITY = 2


@dataclass
class RunContext:
    """Everything one provisioning run needs, plus what earlier steps found."""

    root: Path
    recorder: StatusRecorder
    store: RecordStore
    probe: ReachabilityProbe
    materializer: ConfigMaterializer
    activator: Activator
    identifiers: List[str] = field(default_factory=list)
    device_id: Optional[str] = None
    default_device_id: str = "default"
    force: bool = False

    detection: Optional[ProvisioningStatus] = None
    reachability: Optional[ReachabilityResult] = None
    record: Optional[DeviceRecord] = None
    artifacts: Optional[GeneratedArtifacts] = None


@dataclass(frozen=True)
class StepOutcome:
    """Returned by a step that ends the run early without an error."""

    phase: Phase
    message: str = ""
    exit_code: int = EXIT_OK
    progress: Optional[int] = None


class Step(Protocol):
    step_id: str
    phase: Phase

    def run(self, ctx: RunContext) -> Optional[StepOutcome]:
        ...


@dataclass(frozen=True)
class PipelineResult:
    exit_code: int
    final_phase: Phase
    ran_steps: List[str]
    failed_step: Optional[str] = None
    error: str = ""


def run_pipeline(ctx: RunContext, steps: Sequence[Step]) -> PipelineResult:
    """Run steps in order; the first terminal outcome or error ends the run.

    Each step's phase is reported before it runs so a monitor sees what the
    service is busy with. This is the only place that turns a failure into
    the ERROR phase.
    """

    ran: List[str] = []

    for step in steps:
        ctx.recorder.report(step.phase)
        logger.info("Running step %s", step.step_id)

        try:
            outcome = step.run(ctx)
        except ProvisioningError as e:
            logger.error("Step %s failed: %s", step.step_id, e)
            ctx.recorder.report_error(e.message, e.detail)
            return PipelineResult(
                exit_code=EXIT_FAILURE,
                final_phase=Phase.ERROR,
                ran_steps=ran,
                failed_step=step.step_id,
                error=str(e),
            )
        except Exception as e:
            logger.exception("Step %s crashed", step.step_id)
            detail = str(e) or type(e).__name__
            ctx.recorder.report_error("Provisioning failed", detail)
            return PipelineResult(
                exit_code=EXIT_FAILURE,
                final_phase=Phase.ERROR,
                ran_steps=ran,
                failed_step=step.step_id,
                error=detail,
            )

        ran.append(step.step_id)

        if outcome is not None:
            logger.info("Step %s ended the run with %s", step.step_id, outcome.phase.value)
            ctx.recorder.report(outcome.phase, outcome.message, outcome.progress)
            return PipelineResult(
                exit_code=outcome.exit_code,
                final_phase=outcome.phase,
                ran_steps=ran,
                error=outcome.message if outcome.exit_code != EXIT_OK else "",
            )

    ctx.recorder.report(Phase.COMPLETED, "Greengrass provisioning completed successfully", 100)
    logger.info("Greengrass provisioning completed successfully")
    return PipelineResult(exit_code=EXIT_OK, final_phase=Phase.COMPLETED, ran_steps=ran)
