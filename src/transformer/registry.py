"""Transformer registry: applies compiled rule chains and type coercion."""
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional, Sequence, Union

from src.schema.models import DataType

from .formats import format_temporal, parse_date_string
from .rules import RuleOp, RuleStep, compile_rule

logger = logging.getLogger(__name__)

TRUE_STRINGS = frozenset({"true", "1", "yes", "y"})

Rule = Union[str, Sequence[RuleStep], None]


def _text(value: Any) -> str:
    """String form used when a rule needs text out of any value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


class TransformerRegistry:
    """Registry of rule handlers, keyed by operation."""

    def __init__(self):
        """Initialize registry."""
        self.handlers: Dict[RuleOp, Callable[[Any, Any, Dict[str, Any]], Any]] = {
            RuleOp.DATE: self._date,
            RuleOp.CONCAT: self._concat,
            RuleOp.TRIM: lambda x, args, ctx: x.strip() if isinstance(x, str) else x,
            RuleOp.UPPERCASE: lambda x, args, ctx: x.upper() if isinstance(x, str) else x,
            RuleOp.LOWERCASE: lambda x, args, ctx: x.lower() if isinstance(x, str) else x,
            RuleOp.REPLACE: self._replace,
            RuleOp.SUBSTRING: self._substring,
            RuleOp.PAD_LEFT: self._pad_left,
            RuleOp.PAD_RIGHT: self._pad_right,
            RuleOp.ROUND: self._round,
            RuleOp.FORMAT_NUMBER: self._format_number,
            RuleOp.MASK: self._mask,
        }

    def transform(
        self,
        value: Any,
        rule: Rule,
        target_type: Optional[DataType] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Apply a rule chain to a value, then coerce it to the target type.

        Args:
            value: Raw source value
            rule: Rule string (e.g. "TRIM||UPPERCASE") or an already compiled chain
            target_type: Type to coerce the result to; None skips coercion
            context: Full source record, used by CONCAT

        Returns:
            Transformed value. Never raises: bad steps pass the value through.
        """
        steps = compile_rule(rule) if rule is None or isinstance(rule, str) else rule
        context = context or {}

        for step in steps:
            value = self.apply_step(value, step, context)

        return self.convert_to_type(value, target_type)

    def apply_step(self, value: Any, step: RuleStep, context: Dict[str, Any]) -> Any:
        """Apply one compiled step."""
        if step.is_passthrough:
            logger.warning(step.problem or f"Unknown transformation rule: {step.raw}")
            return value

        handler = self.handlers[step.op]
        try:
            return handler(value, step.args, context)
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.warning(f"Transformation '{step.raw}' failed for value '{value}': {e}")
            return value

    def convert_to_type(self, value: Any, data_type: Optional[DataType]) -> Any:
        """Coerce a value; numeric parse failures return the value unchanged."""
        if value is None or data_type is None:
            return value

        try:
            if data_type is DataType.STRING:
                return _text(value)
            if data_type in (DataType.INTEGER, DataType.LONG):
                if _is_number(value):
                    return int(value)
                return int(_text(value).strip())
            if data_type is DataType.DOUBLE:
                if _is_number(value):
                    return float(value)
                return float(_text(value).strip())
            if data_type is DataType.DECIMAL:
                if isinstance(value, Decimal):
                    return value
                return Decimal(_text(value).strip())
            if data_type is DataType.BOOLEAN:
                if isinstance(value, bool):
                    return value
                return _text(value).strip().lower() in TRUE_STRINGS
        except (ValueError, InvalidOperation, OverflowError) as e:
            logger.warning(f"Failed to convert value '{value}' to type {data_type.value}: {e}")
            return value

        # DATE/DATETIME/TIMESTAMP are shaped by the DATE rule; ARRAY/OBJECT pass through
        return value

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _date(value: Any, args, context: Dict[str, Any]) -> Any:
        if value is None:
            return None

        if isinstance(value, (date, datetime)):
            try:
                return format_temporal(value, args.tokens)
            except ValueError as e:
                logger.warning(f"Failed to transform date value '{value}' with format '{args.pattern}': {e}")
                return _text(value)

        if isinstance(value, str):
            parsed = parse_date_string(value)
            if parsed is None:
                logger.warning(f"Could not parse date string '{value}' with any known format")
                return value
            return format_temporal(parsed, args.tokens)

        return _text(value)

    @staticmethod
    def _concat(value: Any, args, context: Dict[str, Any]) -> str:
        tokens = list(args.tokens)
        separator = ""

        if len(tokens) > 2 and tokens[-1] not in context:
            separator = tokens.pop()
        separator = separator or " "

        parts = []
        for name in tokens:
            field_value = context.get(name.strip())
            if field_value is not None:
                parts.append(_text(field_value))
        return separator.join(parts)

    @staticmethod
    def _replace(value: Any, args, context: Dict[str, Any]) -> Any:
        if isinstance(value, str):
            return value.replace(args.old, args.new)
        return value

    @staticmethod
    def _substring(value: Any, args, context: Dict[str, Any]) -> Any:
        if not isinstance(value, str):
            return value
        if args.start >= len(value):
            return ""
        if args.end is None:
            return value[args.start:]
        return value[args.start:min(args.end, len(value))]

    @staticmethod
    def _pad_left(value: Any, args, context: Dict[str, Any]) -> str:
        return _text(value).rjust(args.length, args.char)

    @staticmethod
    def _pad_right(value: Any, args, context: Dict[str, Any]) -> str:
        return _text(value).ljust(args.length, args.char)

    @staticmethod
    def _round(value: Any, args, context: Dict[str, Any]) -> Any:
        quantum = Decimal(1).scaleb(-args.decimals)
        if isinstance(value, Decimal):
            return value.quantize(quantum, rounding=ROUND_HALF_UP)
        if isinstance(value, float):
            rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
            return float(rounded)
        return value

    @staticmethod
    def _format_number(value: Any, args, context: Dict[str, Any]) -> Any:
        if _is_number(value):
            return args.pattern.format(value)
        return value

    @staticmethod
    def _mask(value: Any, args, context: Dict[str, Any]) -> Any:
        if not isinstance(value, str):
            return value
        if len(value) <= args.show_start + args.show_end:
            return value

        head = value[:args.show_start]
        tail = value[len(value) - args.show_end:] if args.show_end else ""
        stars = "*" * (len(value) - args.show_start - args.show_end)
        return f"{head}{stars}{tail}"
