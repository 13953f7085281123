"""Domain layer definitions."""

from .errors import WorkflowError, WorkflowErrorCode
from .packets import AssemblyOptions, AssemblyResult, AssemblyStatus, FilingPacketType, PacketForm, PacketMetadata
from .workflow import FormStatus, FormType, PacketConfig, PacketType, Workflow, WorkflowMetadata, WorkflowState

__all__ = [
    "AssemblyOptions",
    "AssemblyResult",
    "AssemblyStatus",
    "FilingPacketType",
    "FormStatus",
    "FormType",
    "PacketConfig",
    "PacketForm",
    "PacketMetadata",
    "PacketType",
    "Workflow",
    "WorkflowError",
    "WorkflowErrorCode",
    "WorkflowMetadata",
    "WorkflowState",
]
