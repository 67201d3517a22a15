"""Trigger step executors: expose the event that started the execution."""

from typing import Any, Dict

from ..core.context import ExecutionContext
from .base import StepEnvironment, StepExecutor


class ManualTriggerExecutor(StepExecutor):
    """Entry point for executions started by hand."""

    type = "manual-trigger"
    category = "trigger"
    description = "Outputs the manual trigger payload"

    def execute(self, node_id: str, parameters: Dict[str, Any], context: ExecutionContext,
                env: StepEnvironment) -> Dict[str, Any]:
        trigger = context.trigger
        return {
            "triggered": True,
            "trigger_type": trigger.type,
            "data": trigger.payload,
            "timestamp": trigger.timestamp.isoformat(),
        }


class WebhookTriggerExecutor(StepExecutor):
    """Entry point for executions started by an inbound HTTP call.

    The trigger payload is expected to carry ``method``, ``headers``, ``body``
    and ``query`` as captured by whatever received the request.
    """

    type = "webhook-trigger"
    category = "trigger"
    description = "Outputs the request captured by a webhook"

    def execute(self, node_id, parameters, context, env):
        payload = context.trigger.payload
        return {
            "triggered": True,
            "trigger_type": context.trigger.type,
            "method": payload.get("method", "POST"),
            "headers": payload.get("headers", {}),
            "body": payload.get("body"),
            "query": payload.get("query", {}),
            "timestamp": context.trigger.timestamp.isoformat(),
        }


class ScheduleTriggerExecutor(StepExecutor):
    """Entry point for executions started by a scheduler."""

    type = "schedule-trigger"
    category = "trigger"
    description = "Outputs the schedule that fired"

    def execute(self, node_id, parameters, context, env):
        return {
            "triggered": True,
            "trigger_type": "schedule",
            "cron": parameters.get("cron", ""),
            "scheduled_time": parameters.get("scheduled_time") or context.trigger.timestamp.isoformat(),
        }
