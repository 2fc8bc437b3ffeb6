"""
Domain models — Pydantic types for the provisioner.

All models are re-exported here for convenient access:

    from provisioner.core.models import Dependencies, ProvisionState, Receipt, Step
"""

from provisioner.core.models.deps import Dependencies
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.state import (
    ProvisionState,
    RunRecord,
    StepRecord,
    StepStatus,
)
from provisioner.core.models.step import Step, StepContext

__all__ = [
    # deps.py
    "Dependencies",
    # state.py
    "ProvisionState",
    # receipt.py
    "Receipt",
    "RunRecord",
    # step.py
    "Step",
    "StepContext",
    "StepRecord",
    "StepStatus",
]
