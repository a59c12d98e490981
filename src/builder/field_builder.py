"""
Field Builder - Resolves and transforms individual payload fields

Supports:
- Value resolution (bare column → TABLE.column → default value)
- Rule-chain transformations (see src/transformer/rules.py)
- Type coercion to the mapping's data type
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, Optional, Tuple
import logging

from src.schema.models import DataType
from src.transformer.registry import TransformerRegistry
from src.transformer.rules import RuleStep, compile_rule

logger = logging.getLogger(__name__)


@dataclass
class FieldMapping:
    """Maps a source column to a dotted target path in the tenant payload"""

    client_id: str
    source_table: str  # e.g. "CUSTOMER"
    source_column: str  # e.g. "first_name"
    target_field_path: str  # e.g. "customer.name.first"
    data_type: DataType = DataType.STRING
    transformation_rule: Optional[str] = None  # e.g. "TRIM||UPPERCASE"
    is_mandatory: bool = False
    default_value: Optional[str] = None
    field_order: int = 0
    mapping_id: Optional[int] = None
    rule_chain: Tuple[RuleStep, ...] = dataclass_field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not isinstance(self.data_type, DataType):
            self.data_type = DataType.parse(self.data_type)
        self.rule_chain = compile_rule(self.transformation_rule)

    @property
    def qualified_column(self) -> Optional[str]:
        if not self.source_table:
            return None
        return f"{self.source_table}.{self.source_column}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "mapping_id": self.mapping_id,
            "client_id": self.client_id,
            "source_table": self.source_table,
            "source_column": self.source_column,
            "target_field_path": self.target_field_path,
            "data_type": self.data_type.value,
            "transformation_rule": self.transformation_rule,
            "is_mandatory": self.is_mandatory,
            "default_value": self.default_value,
            "field_order": self.field_order,
        }


class FieldBuilder:
    """Builds individual fields for tenant payloads"""

    def __init__(self, registry: Optional[TransformerRegistry] = None):
        """
        Initialize FieldBuilder

        Args:
            registry: Transformer registry used to apply rule chains
        """
        self.registry = registry or TransformerRegistry()

    @staticmethod
    def resolve_value(mapping: FieldMapping, source_data: Dict[str, Any]) -> Any:
        """
        Resolve the raw value for a mapping.

        Tries the bare column name, then ``TABLE.column``, then a non-empty
        default value. Returns None when none of them yields a value.
        """
        value = source_data.get(mapping.source_column)

        if value is None and mapping.qualified_column:
            value = source_data.get(mapping.qualified_column)

        if value is None and mapping.default_value:
            value = mapping.default_value

        return value

    @classmethod
    def is_missing(cls, mapping: FieldMapping, source_data: Dict[str, Any]) -> bool:
        """True when a mandatory mapping resolves to nothing"""
        return mapping.is_mandatory and cls.resolve_value(mapping, source_data) is None

    def build_field(
        self,
        mapping: FieldMapping,
        source_data: Dict[str, Any],
    ) -> Optional[Tuple[str, Any]]:
        """
        Build a single field

        Args:
            mapping: Field mapping configuration
            source_data: Source record (bare and TABLE.column keys)

        Returns:
            Tuple of (target_field_path, field_value), or None when the field
            has no value and no default and is skipped
        """
        value = self.resolve_value(mapping, source_data)

        # An empty-string default still places the field, as null
        if value is None and mapping.default_value is None:
            return None

        value = self.registry.transform(
            value,
            mapping.rule_chain,
            target_type=mapping.data_type,
            context=source_data,
        )
        return mapping.target_field_path, value
