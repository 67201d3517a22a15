"""Human-in-the-loop step executors."""

from ..core.exceptions import ExecutionError
from ..models.core import WaitKind
from .base import StepExecutor, Suspend
from .flow import parse_duration

DEFAULT_APPROVAL_EVENT = "approval"


class ApprovalExecutor(StepExecutor):
    """Parks the execution until someone answers an approval request.

    Parameters: ``message`` (required), ``approvers`` (list), ``event_type``
    (default ``"approval"``) and ``timeout`` as a duration string. Without a
    ``timeout`` the node timeout or the workflow wait timeout applies. The
    request is published on the notification channel once the wait is
    persisted; the answer arrives through ``WorkflowEngine.send_event``.
    """

    type = "approval"
    category = "human"
    required_parameters = ("message",)
    description = "Waits for an approval event"

    def validate_parameters(self, parameters):
        errors = []
        message = parameters.get("message")
        if not isinstance(message, str) or not message.strip():
            errors.append("Approval message is required")
        approvers = parameters.get("approvers")
        if approvers is not None and not isinstance(approvers, list):
            errors.append("Approvers must be a list")
        return errors

    def execute(self, node_id, parameters, context, env):
        message = parameters.get("message")
        if not message:
            raise ExecutionError("Approval message is required", node_id=node_id)

        event_type = parameters.get("event_type") or DEFAULT_APPROVAL_EVENT
        timeout = parse_duration(parameters["timeout"]) if parameters.get("timeout") else None
        if timeout is not None and timeout <= 0:
            raise ExecutionError(f"Invalid approval timeout {parameters['timeout']!r}", node_id=node_id)

        return Suspend(
            kind=WaitKind.EVENT,
            event_type=event_type,
            timeout=timeout,
            notification={
                "kind": "approval_requested",
                "approval_id": f"approval_{node_id}_{env.execution_id}",
                "message": message,
                "approvers": list(parameters.get("approvers") or []),
                "attempt": env.attempt_number,
                "requested_at": env.now().isoformat(),
            }
        )
