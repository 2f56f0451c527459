"""Step enumeration, progress events and the immutable run result."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple

OPERATION_INSTALL = "install"
OPERATION_DECOMMISSION = "decommission"


class MutationStep(IntEnum):
    """Ordered run steps; ``FAILED`` is terminal and reachable from any step."""

    IDLE = 0
    DETECTING_VARIANT = 1
    CONNECTING = 2
    CAPTURING_SNAPSHOT = 3
    ACQUIRING_ARTIFACTS = 4
    TRANSFERRING = 5
    SETTING_PERMISSIONS = 6
    RESTARTING_SERVICES = 7
    VERIFYING = 8
    COMPLETE = 9
    FAILED = 99

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").capitalize()

    @property
    def is_terminal(self) -> bool:
        return self in (MutationStep.COMPLETE, MutationStep.FAILED)


# Percent reached when each step starts. TRANSFERRING fills the gap up to the
# next step with one tick per file.
STEP_PERCENT = {
    MutationStep.IDLE: 0,
    MutationStep.DETECTING_VARIANT: 5,
    MutationStep.CONNECTING: 10,
    MutationStep.CAPTURING_SNAPSHOT: 15,
    MutationStep.ACQUIRING_ARTIFACTS: 25,
    MutationStep.TRANSFERRING: 35,
    MutationStep.SETTING_PERMISSIONS: 75,
    MutationStep.RESTARTING_SERVICES: 85,
    MutationStep.VERIFYING: 92,
    MutationStep.COMPLETE: 100,
}


@dataclass(frozen=True)
class ProgressEvent:
    percent: int
    status: str
    step: MutationStep = MutationStep.IDLE

    def __post_init__(self) -> None:
        if not 0 <= self.percent <= 100:
            raise ValueError(f"Progress percent out of range: {self.percent}")


@dataclass(frozen=True)
class MutationResult:
    """Structured outcome of one orchestration run.

    ``current_step`` is the step that was in progress when the run stopped, or
    ``COMPLETE`` on success. ``failed`` lists logical names whose individual
    transfer (or deletion) failed even when the run as a whole succeeded.
    """

    success: bool
    current_step: MutationStep
    failed_step: Optional[MutationStep] = None
    cause: Optional[str] = None
    message: str = ""
    detail: Optional[str] = None
    transferred: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    snapshot_id: Optional[str] = None
    elapsed_s: float = 0.0
    requires_reboot: bool = False
    operation: str = OPERATION_INSTALL

    @property
    def partial(self) -> bool:
        return bool(self.transferred) and bool(self.failed)

    @property
    def recoverable(self) -> bool:
        return self.snapshot_id is not None

    def summary(self) -> str:
        if self.success:
            text = (
                f"{self.operation} complete: {len(self.transferred)} file(s) in "
                f"{self.elapsed_s:.1f}s"
            )
            if self.failed:
                text += f", {len(self.failed)} failed ({', '.join(self.failed)})"
            if self.requires_reboot:
                text += "; restart required"
            return text
        step = (self.failed_step or self.current_step).label
        text = f"{self.operation} failed at {step}: {self.message or self.cause}"
        if self.snapshot_id:
            text += f" (snapshot {self.snapshot_id} retained)"
        return text


__all__ = [
    "MutationResult",
    "MutationStep",
    "OPERATION_DECOMMISSION",
    "OPERATION_INSTALL",
    "ProgressEvent",
    "STEP_PERCENT",
]
