"""
Rule compiler for the field transformation DSL.

A rule is a ``||``-joined chain of steps, each ``OP`` or ``OP:args``:

    TRIM||UPPERCASE
    DATE:yyyy-MM-dd
    CONCAT:first_name|last_name
    SUBSTRING:0,4||PAD_LEFT:8,0

Each step is parsed once into a ``RuleStep`` holding a closed ``RuleOp`` and a
typed argument object. Steps that cannot be understood compile to a
pass-through step carrying the reason, so applying a rule never raises.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Optional, Tuple

from .formats import NumberPattern, compile_date_pattern

CHAIN_SEPARATOR = "||"
ARG_SEPARATOR = ":"


class RuleOp(str, Enum):
    DATE = "DATE"
    CONCAT = "CONCAT"
    TRIM = "TRIM"
    UPPERCASE = "UPPERCASE"
    LOWERCASE = "LOWERCASE"
    REPLACE = "REPLACE"
    SUBSTRING = "SUBSTRING"
    PAD_LEFT = "PAD_LEFT"
    PAD_RIGHT = "PAD_RIGHT"
    ROUND = "ROUND"
    FORMAT_NUMBER = "FORMAT_NUMBER"
    MASK = "MASK"


NO_ARG_OPS = frozenset({RuleOp.TRIM, RuleOp.UPPERCASE, RuleOp.LOWERCASE})


@dataclass(frozen=True)
class DateArgs:
    pattern: str
    tokens: Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class ConcatArgs:
    # The last token is a separator only when it is not a field in the record,
    # which can only be decided at apply time.
    tokens: Tuple[str, ...]


@dataclass(frozen=True)
class ReplaceArgs:
    old: str
    new: str


@dataclass(frozen=True)
class SubstringArgs:
    start: int
    end: Optional[int] = None


@dataclass(frozen=True)
class PadArgs:
    length: int
    char: str


@dataclass(frozen=True)
class RoundArgs:
    decimals: int


@dataclass(frozen=True)
class FormatNumberArgs:
    pattern: NumberPattern


@dataclass(frozen=True)
class MaskArgs:
    show_start: int
    show_end: int = 0


@dataclass(frozen=True)
class RuleStep:
    """One compiled step. ``op`` is None for steps that pass values through."""

    raw: str
    op: Optional[RuleOp] = None
    args: Any = None
    problem: Optional[str] = None

    @property
    def is_passthrough(self) -> bool:
        return self.op is None


def _ints(text: str) -> Tuple[int, ...]:
    return tuple(int(part.strip()) for part in text.split(","))


def _parse_args(op: RuleOp, text: str) -> Any:
    """Build the typed argument object for ``op``. Raises ValueError on bad input."""
    if op is RuleOp.DATE:
        if not text:
            raise ValueError("missing output pattern")
        return DateArgs(pattern=text, tokens=compile_date_pattern(text))

    if op is RuleOp.CONCAT:
        tokens = tuple(text.split("|"))
        if not any(token.strip() for token in tokens):
            raise ValueError("no fields to concatenate")
        return ConcatArgs(tokens=tokens)

    if op is RuleOp.REPLACE:
        parts = text.split(">")
        if len(parts) != 2:
            raise ValueError("expected old>new")
        return ReplaceArgs(old=parts[0], new=parts[1])

    if op is RuleOp.SUBSTRING:
        parts = text.split(",")
        start = int(parts[0].strip())
        end = int(parts[1].strip()) if len(parts) == 2 else None
        if start < 0 or (end is not None and end < 0):
            raise ValueError("negative index")
        return SubstringArgs(start=start, end=end)

    if op in (RuleOp.PAD_LEFT, RuleOp.PAD_RIGHT):
        parts = text.split(",")
        length = int(parts[0].strip())
        default_char = "0" if op is RuleOp.PAD_LEFT else " "
        char = parts[1][0] if len(parts) > 1 and parts[1] else default_char
        return PadArgs(length=length, char=char)

    if op is RuleOp.ROUND:
        return RoundArgs(decimals=int(text.strip()))

    if op is RuleOp.FORMAT_NUMBER:
        return FormatNumberArgs(pattern=NumberPattern.compile(text))

    if op is RuleOp.MASK:
        values = _ints(text)
        show_start = values[0]
        show_end = values[1] if len(values) > 1 else 0
        if show_start < 0 or show_end < 0:
            raise ValueError("negative mask bounds")
        return MaskArgs(show_start=show_start, show_end=show_end)

    raise ValueError(f"no argument parser for {op.value}")


def compile_step(raw: str) -> RuleStep:
    """Compile a single ``OP`` or ``OP:args`` step."""
    name, sep, text = raw.partition(ARG_SEPARATOR)
    try:
        op = RuleOp(name)
    except ValueError:
        return RuleStep(raw=raw, problem=f"Unknown transformation rule: {raw}")

    if op in NO_ARG_OPS:
        if sep:
            return RuleStep(raw=raw, problem=f"Unknown transformation rule: {raw}")
        return RuleStep(raw=raw, op=op)

    if not sep:
        return RuleStep(raw=raw, problem=f"Unknown transformation rule: {raw}")

    try:
        args = _parse_args(op, text)
    except (ValueError, IndexError) as e:
        return RuleStep(raw=raw, problem=f"Invalid arguments for rule '{raw}': {e}")

    return RuleStep(raw=raw, op=op, args=args)


@lru_cache(maxsize=1024)
def compile_rule(rule: Optional[str]) -> Tuple[RuleStep, ...]:
    """Compile a full rule chain. Empty or missing rules compile to ()."""
    if not rule or not rule.strip():
        return ()

    steps = []
    for part in rule.split(CHAIN_SEPARATOR):
        part = part.strip()
        if part:
            steps.append(compile_step(part))
    return tuple(steps)
