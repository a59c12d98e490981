"""
Payload Builder Module

Builds nested tenant payloads from flat source records with:
- Field mapping resolution and rule-chain transformations
- Dotted-path assembly (up to 5 levels, array segments)
- Mandatory-field validation and JSON serialization
"""

from .payload_builder import PayloadBuilder, BuiltPayload
from .field_builder import FieldBuilder, FieldMapping
from .path_assembler import PathAssembler, MAX_DEPTH

__all__ = [
    "PayloadBuilder",
    "BuiltPayload",
    "FieldBuilder",
    "FieldMapping",
    "PathAssembler",
    "MAX_DEPTH",
]
