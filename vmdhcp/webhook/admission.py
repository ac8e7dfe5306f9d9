"""Admission webhook building blocks: JSON patches, resource descriptions and errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple

NAMESPACED_SCOPE = "Namespaced"
CLUSTER_SCOPE = "Cluster"


class PatchOp(str, Enum):
    """JSON patch operation names."""

    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"
    MOVE = "move"
    COPY = "copy"
    TEST = "test"


@dataclass(frozen=True)
class PatchOperation:
    """One step of a JSON patch."""

    op: PatchOp
    path: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"op": self.op.value, "path": self.path}
        if self.value is not None:
            result["value"] = self.value
        return result


class Operation(str, Enum):
    """Admission request operations."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


@dataclass(frozen=True)
class Resource:
    """Which objects and operations a webhook handles."""

    names: Tuple[str, ...]
    api_group: str
    api_version: str
    object_type: type
    operation_types: Tuple[Operation, ...]
    scope: str = field(default=NAMESPACED_SCOPE)


class AdmissionError(Exception):
    """Raised when a webhook rejects an operation on an object."""

    def __init__(
        self, operation: Operation, kind: str, namespace: str, name: str, cause: object
    ) -> None:
        self.operation = operation
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.cause = cause
        verb = operation.value.lower()
        super().__init__(f"cannot {verb} {kind} {namespace}/{name} because {cause}")
        if isinstance(cause, BaseException):
            self.__cause__ = cause


def create_error(kind: str, namespace: str, name: str, cause: object) -> AdmissionError:
    return AdmissionError(Operation.CREATE, kind, namespace, name, cause)


def update_error(kind: str, namespace: str, name: str, cause: object) -> AdmissionError:
    return AdmissionError(Operation.UPDATE, kind, namespace, name, cause)


def delete_error(kind: str, namespace: str, name: str, cause: object) -> AdmissionError:
    return AdmissionError(Operation.DELETE, kind, namespace, name, cause)