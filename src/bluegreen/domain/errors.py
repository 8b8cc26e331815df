"""Error taxonomy shared by the controller and the infrastructure adapters."""

from __future__ import annotations


class BlueGreenError(Exception):
    """Base class for all controller errors."""


class CapacityError(BlueGreenError):
    """The platform cannot satisfy the requested instance count."""


class ImageError(BlueGreenError):
    """The image reference cannot be resolved."""


class PlatformError(BlueGreenError):
    """Transient failure talking to the container platform."""


class RouterError(BlueGreenError):
    """A traffic shift was rejected or could not be applied."""


class HealthTimeoutError(BlueGreenError):
    """Health did not reach the policy threshold within the deployment budget."""


class ConflictError(BlueGreenError):
    """Optimistic-concurrency write rejected because the stored version advanced."""


class DegradedRollbackError(BlueGreenError):
    """Traffic could not be restored to blue; both task sets were left running."""


class TaskSetNotFoundError(BlueGreenError):
    """The referenced task set is unknown to the platform."""


class DeploymentNotFoundError(BlueGreenError):
    """Raised when a deployment is not found."""


class DeploymentConflictError(BlueGreenError):
    """Another non-terminal deployment already exists for the service."""


class CancellationRejectedError(BlueGreenError):
    """The deployment can no longer be cancelled."""


class InvalidStateTransitionError(BlueGreenError):
    """Raised when an invalid state transition is attempted."""


# Errors worth retrying locally before escalating to a state transition.
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (PlatformError, RouterError)
