"""
Payload Builder - Orchestrates tenant payload generation

Integrates:
- FieldBuilder: value resolution, rule chains, type coercion
- PathAssembler: dotted target paths → nested tree
- Mandatory-field validation and JSON serialization
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import simplejson

from src.errors import MandatoryFieldMissing, PayloadSerializationFailed, SourceDataNotFound
from src.transformer.registry import TransformerRegistry

from .field_builder import FieldBuilder, FieldMapping
from .path_assembler import PathAssembler

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    """Encode the non-JSON scalars a source record can carry."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _check_decimals(value: Any) -> None:
    """Decimals are written as exact number text, so NaN/Infinity must be caught first."""
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Out of range decimal value: {value}")
    elif isinstance(value, dict):
        for item in value.values():
            _check_decimals(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _check_decimals(item)


@dataclass
class BuiltPayload:
    """Finished payload: the tree and its wire form"""

    tree: Dict[str, Any]
    json: str

    @property
    def size(self) -> int:
        return len(self.json.encode("utf-8"))


class PayloadBuilder:
    """
    Builds complete tenant payloads from source data

    Usage:
    ```python
    mappings = [
        FieldMapping("acme", "CUSTOMER", "first_name", "customer.name.first",
                     transformation_rule="TRIM||UPPERCASE", is_mandatory=True),
        FieldMapping("acme", "CUSTOMER", "created", "customer.since",
                     transformation_rule="DATE:yyyy-MM-dd"),
    ]

    payload = builder.build(mappings, source_row)
    # Returns: {"customer": {"name": {"first": "ADA"}, "since": "2024-06-15"}}
    ```
    """

    def __init__(
        self,
        registry: Optional[TransformerRegistry] = None,
        assembler: Optional[PathAssembler] = None,
    ):
        """
        Initialize PayloadBuilder

        Args:
            registry: Transformer registry shared by all fields
            assembler: Path assembler for target paths
        """
        self.field_builder = FieldBuilder(registry)
        self.assembler = assembler or PathAssembler()

    def build(
        self,
        mappings: List[FieldMapping],
        source_data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Build a payload tree

        Args:
            mappings: Field mappings, in field order
            source_data: Source record

        Returns:
            Nested payload dictionary
        """
        path_values: Dict[str, Any] = {}

        for mapping in mappings:
            built = self.field_builder.build_field(mapping, source_data)
            if built is None:
                continue
            target, value = built
            path_values[target] = value

        return self.assembler.assemble(path_values)

    def validate_mandatory(
        self,
        mappings: List[FieldMapping],
        source_data: Dict[str, Any],
    ) -> List[str]:
        """
        Check mandatory mappings against the source record

        Returns:
            Target paths of mandatory fields with no value and no default
        """
        return [
            mapping.target_field_path
            for mapping in mappings
            if self.field_builder.is_missing(mapping, source_data)
        ]

    def build_and_merge(
        self,
        mappings: List[FieldMapping],
        source_data: Dict[str, Any],
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Build, then deep-merge caller overrides on top (overrides win)"""
        payload = self.build(mappings, source_data)
        if overrides:
            payload = self.assembler.merge(payload, overrides)
        return payload

    def serialize(self, payload: Dict[str, Any], client_id: Optional[str] = None) -> str:
        """
        Serialize a payload tree to compact JSON

        Raises:
            PayloadSerializationFailed: NaN/Infinity or unsupported values
        """
        try:
            _check_decimals(payload)
            return simplejson.dumps(
                payload,
                default=_json_default,
                use_decimal=True,
                allow_nan=False,
                ensure_ascii=False,
                separators=(",", ":"),
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize payload for client {client_id}: {e}")
            raise PayloadSerializationFailed(
                f"Failed to serialize payload to JSON: {e}", client_id=client_id
            ) from e

    def build_payload(
        self,
        client_id: str,
        source_record_id: str,
        mappings: List[FieldMapping],
        source_data: Dict[str, Any],
        additional_data: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> BuiltPayload:
        """
        Full pipeline: check source data, validate mandatory fields, build,
        merge caller data and serialize.

        Raises:
            SourceDataNotFound: empty source record with no default to fall back on
            MandatoryFieldMissing: mandatory fields unresolved (checked before building)
            PayloadSerializationFailed: the tree cannot be written as JSON
        """
        logger.info(f"Building payload for client: {client_id}, record: {source_record_id}")

        if not source_data and not any(m.is_mandatory and m.default_value for m in mappings):
            raise SourceDataNotFound(client_id, source_record_id, correlation_id=correlation_id)

        missing = self.validate_mandatory(mappings, source_data)
        if missing:
            logger.warning(f"Missing mandatory fields for client {client_id}: {missing}")
            raise MandatoryFieldMissing(
                missing,
                client_id=client_id,
                source_record_id=source_record_id,
                correlation_id=correlation_id,
            )

        tree = self.build_and_merge(mappings, source_data, additional_data)
        try:
            payload_json = self.serialize(tree, client_id=client_id)
        except PayloadSerializationFailed as e:
            e.correlation_id = correlation_id
            raise

        logger.debug(f"Built payload for client {client_id}: {len(payload_json)} chars")
        return BuiltPayload(tree=tree, json=payload_json)

    def validate_payload(self, payload_json: str, mappings: List[FieldMapping]) -> bool:
        """
        Check a serialized payload: valid JSON object, every mandatory
        target path present and non-null.
        """
        try:
            tree = simplejson.loads(payload_json)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to parse payload for validation: {e}")
            return False

        if not isinstance(tree, dict):
            logger.warning("Validation failed: payload is not a JSON object")
            return False

        for mapping in mappings:
            if mapping.is_mandatory and self.assembler.get(tree, mapping.target_field_path) is None:
                logger.warning(
                    f"Validation failed: missing mandatory field '{mapping.target_field_path}'"
                )
                return False

        return True

    @staticmethod
    def payload_size(payload_json: Optional[str]) -> int:
        """Payload size in bytes"""
        return len(payload_json.encode("utf-8")) if payload_json else 0
