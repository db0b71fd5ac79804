from .step_10_check_existing import CheckExistingStep
from .step_20_check_reachability import CheckReachabilityStep
from .step_30_read_record import ReadRecordStep
from .step_40_generate_config import GenerateConfigStep
from .step_50_activate import ActivateStep

__all__ = [
    "CheckExistingStep",
    "CheckReachabilityStep",
    "ReadRecordStep",
    "GenerateConfigStep",
    "ActivateStep",
]
