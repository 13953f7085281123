"""Application services."""

from .assembler import assemble_packet, create_placeholder_packet, estimate_assembly_time, generate_packet_filename
from .autosave import AutoSaveEngine, RetryPolicy, SaveOutcome
from .workflow import (
    TROWorkflowEngine,
    configure_stores,
    create_workflow_engine,
    get_stores,
    reset_workflow_state,
)

__all__ = [
    "AutoSaveEngine",
    "RetryPolicy",
    "SaveOutcome",
    "TROWorkflowEngine",
    "assemble_packet",
    "configure_stores",
    "create_placeholder_packet",
    "create_workflow_engine",
    "estimate_assembly_time",
    "generate_packet_filename",
    "get_stores",
    "reset_workflow_state",
]
