"""
Error taxonomy for the chaos controller

Store errors map onto the optimistic-concurrency contract of the backing
object store, spec errors are fatal for a reconcile pass, and fault errors
come back from the fault executor.
"""
from typing import Optional


class ChaosControllerError(Exception):
    """Root of every error raised by the controller"""


class StoreError(ChaosControllerError):
    """Object store request failed"""


class NotFoundError(StoreError):
    """Object does not exist (or was deleted between trigger and fetch)"""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


class AlreadyExistsError(StoreError):
    """Object with the same key already exists"""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} {key} already exists")
        self.kind = kind
        self.key = key


class ConflictError(StoreError):
    """Write carried a stale resource version"""

    def __init__(self, kind: str, key: str, expected: Optional[str] = None, actual: Optional[str] = None):
        message = f"conflict updating {kind} {key}"
        if expected is not None or actual is not None:
            message += f" (resource version {expected}, stored {actual})"
        super().__init__(message)
        self.kind = kind
        self.key = key


class SelectorError(ChaosControllerError):
    """Target selector could not be resolved"""


class MalformedSpecError(ChaosControllerError, ValueError):
    """Declarative spec cannot be interpreted"""


class InvalidDurationError(MalformedSpecError):
    """Duration string does not follow the duration grammar"""


class InvalidRateError(MalformedSpecError):
    """Bandwidth rate string has an unknown unit or a bad number"""


class UnsupportedKindError(ChaosControllerError):
    """No chaos kind registered under the requested name"""

    def __init__(self, kind: str):
        super().__init__(f"unsupported chaos kind: {kind}")
        self.kind = kind


class FaultExecutorError(ChaosControllerError):
    """Fault executor rejected a request"""


class FaultAlreadyAppliedError(FaultExecutorError):
    """Identical fault is already present on the target"""


class FaultNotAppliedError(FaultExecutorError):
    """There is no fault to withdraw on the target"""


class WorkflowError(ChaosControllerError):
    """Workflow engine error"""


class NoSuchTemplateError(WorkflowError):
    def __init__(self, template_name: str):
        super().__init__(f"no such template: {template_name}")
        self.template_name = template_name


class NoSuchNodeError(WorkflowError):
    def __init__(self, node_name: str):
        super().__init__(f"no such node: {node_name}")
        self.node_name = node_name


class TemplatesRequiredError(WorkflowError):
    def __init__(self):
        super().__init__("missing required templates in workflow spec")


class UnsupportedNodeTypeError(WorkflowError):
    def __init__(self, node_type: str):
        super().__init__(f"unsupported node type: {node_type}")
        self.node_type = node_type


class ActionError(ChaosControllerError):
    """Apply or recover could not be carried out for a record"""
