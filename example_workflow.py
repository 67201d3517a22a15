"""Example approval workflow demonstrating the workflow engine capabilities."""

from flowengine import WorkflowDefinition, create_engine
from flowengine.config import get_testing_config
from flowengine.core.notifications import InMemoryNotificationChannel


def create_deploy_approval_workflow() -> WorkflowDefinition:
    """
    Create an example deployment workflow.

    This workflow:
    1. Receives a deployment request
    2. Classifies the change by size
    3. Waits for a human approval
    4. Records the deployment
    """
    return WorkflowDefinition.model_validate({
        "id": "deploy-approval",
        "name": "Deploy with approval",
        "nodes": [
            {"id": "request", "type": "manual-trigger"},
            {
                "id": "classify",
                "type": "condition",
                "parameters": {
                    "conditions": [
                        {"field": "trigger.payload.lines_changed", "operator": "greaterThan",
                         "value": 500, "branch": "large"},
                    ],
                    "default_branch": "small",
                },
            },
            {
                "id": "approve",
                "type": "approval",
                "timeout": 3600,
                "parameters": {
                    "message": "Deploy {{trigger.payload.service}} ({{steps.classify.branch}} change)?",
                    "approvers": ["release-managers"],
                },
            },
            {
                "id": "record",
                "type": "set",
                "parameters": {
                    "values": {
                        "service": "{{trigger.payload.service}}",
                        "approved_by": "{{steps.approve.payload.user}}",
                    }
                },
            },
        ],
        "connections": {
            "request": {"main": [[{"node": "classify", "index": 0}]]},
            "classify": {"main": [[{"node": "approve", "index": 0}]]},
            "approve": {"main": [[{"node": "record", "index": 0}]]},
        },
        "settings": {"retryLimit": 2, "retryBackoff": "exponential"},
    })


def main():
    """Run the workflow through its approval step."""
    notifier = InMemoryNotificationChannel()
    engine = create_engine(get_testing_config(), notifier=notifier, start_sweeper=False)

    try:
        workflow = create_deploy_approval_workflow()
        engine.catalog.register(workflow)

        print("Workflow Engine - Example Workflow")
        print("=" * 50)
        print(f"Workflow: {workflow.name} ({len(workflow.nodes)} nodes)")

        execution_id = engine.start(workflow.id, {"service": "billing", "lines_changed": 820})
        record = engine.wait(execution_id, timeout=30)
        print(f"Status after start: {record.status.value}")

        for message in notifier.messages(execution_id):
            print(f"Notification: {message['payload']['message']}")

        engine.send_event(execution_id, "approval", {"approved": True, "user": "alice"})
        record = engine.wait(execution_id, timeout=30)
        print(f"Status after approval: {record.status.value}")
        print(f"Recorded: {engine.get_result(execution_id)['steps']['record']}")
    finally:
        engine.shutdown()


if __name__ == "__main__":
    main()
