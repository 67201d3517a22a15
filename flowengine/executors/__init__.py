"""Built-in step executors."""

from typing import List

from .base import FunctionExecutor, StepEnvironment, StepExecutor, Suspend
from .data import AggregateExecutor, FilterExecutor, ParseJsonExecutor, TransformExecutor
from .flow import ConditionExecutor, DelayExecutor, SetExecutor, parse_duration
from .http import HttpRequestExecutor
from .human import ApprovalExecutor
from .triggers import ManualTriggerExecutor, ScheduleTriggerExecutor, WebhookTriggerExecutor


def builtin_executors() -> List[StepExecutor]:
    """Fresh instances of every built-in executor."""
    return [
        ManualTriggerExecutor(),
        WebhookTriggerExecutor(),
        ScheduleTriggerExecutor(),
        SetExecutor(),
        ConditionExecutor(),
        DelayExecutor(),
        FilterExecutor(),
        TransformExecutor(),
        AggregateExecutor(),
        ParseJsonExecutor(),
        ApprovalExecutor(),
        HttpRequestExecutor(),
    ]


__all__ = [
    "AggregateExecutor",
    "ApprovalExecutor",
    "ConditionExecutor",
    "DelayExecutor",
    "FilterExecutor",
    "FunctionExecutor",
    "HttpRequestExecutor",
    "ManualTriggerExecutor",
    "ParseJsonExecutor",
    "ScheduleTriggerExecutor",
    "SetExecutor",
    "StepEnvironment",
    "StepExecutor",
    "Suspend",
    "TransformExecutor",
    "WebhookTriggerExecutor",
    "builtin_executors",
    "parse_duration",
]
