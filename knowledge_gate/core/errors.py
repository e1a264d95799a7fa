"""
Error taxonomy for query orchestration.

Authorization and upstream failures are raised per call; terminal errors end
a whole request with a single explanatory message.
"""

from typing import List, Optional


class OrchestrationError(Exception):
    """Base class for every failure raised by the orchestration engine."""


class AuthorizationError(OrchestrationError):
    """Raised before an upstream request is made."""


class InsufficientBalance(AuthorizationError):
    def __init__(self, available: float, minimum: float):
        super().__init__(
            f"Insufficient Sparks: balance {available:.4f} is below the "
            f"minimum transaction fee of {minimum:.4f}"
        )
        self.available = available
        self.minimum = minimum


class AuthorizationCancelled(AuthorizationError):
    """The human confirmation step was dismissed; nothing is charged."""

    def __init__(self, model_id: str):
        super().__init__(f"Spend confirmation for {model_id} was cancelled")
        self.model_id = model_id


class BudgetTooLow(AuthorizationError):
    def __init__(self, model_id: str, ceiling: float):
        super().__init__(
            f"Budget of {ceiling:.4f} Sparks is too low to generate any tokens with {model_id}"
        )
        self.model_id = model_id
        self.ceiling = ceiling


class UpstreamFailure(OrchestrationError):
    """Raised by a single upstream call."""


class UpstreamTimeout(UpstreamFailure):
    def __init__(self, model_id: str, timeout: float):
        super().__init__(f"Request to {model_id} timed out after {timeout:g}s")
        self.model_id = model_id
        self.timeout = timeout


class UpstreamError(UpstreamFailure):
    """Upstream answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str, model_id: Optional[str] = None):
        target = f" for {model_id}" if model_id else ""
        super().__init__(f"Upstream request{target} failed with status {status_code}: {body}")
        self.status_code = status_code
        self.body = body
        self.model_id = model_id


class UpstreamEmptyResponse(UpstreamFailure):
    def __init__(self, model_id: str):
        super().__init__(f"Invalid or empty response from {model_id}")
        self.model_id = model_id


class TerminalError(OrchestrationError):
    """Ends the entire request."""


class UserSelectedModelFailed(TerminalError):
    def __init__(self, model_id: str, cause: Exception):
        super().__init__(
            f"Selected model {model_id} failed: {cause}. "
            "Please choose another model."
        )
        self.model_id = model_id
        self.cause = cause


class AllProvidersFailed(TerminalError):
    def __init__(self, attempted: List[str]):
        super().__init__(f"All available models failed ({', '.join(attempted) or 'none tried'})")
        self.attempted = list(attempted)


class NoSuccessfulResponses(TerminalError):
    def __init__(self):
        super().__init__("No successful responses to summarize")


class NoModelsSelected(TerminalError):
    def __init__(self, mode: str):
        super().__init__(f"No models selected for {mode} mode")
        self.mode = mode
