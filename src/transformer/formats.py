"""
Date and number pattern dialects used by transformation rules.

Rules are persisted configuration, so the pattern syntax follows the
``yyyy-MM-dd`` / ``#,##0.00`` conventions stored in existing mappings rather
than Python's strftime or format mini-language syntax.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Optional, Tuple

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

DATE_FIELDS = frozenset("yuMdHhmsSaE")
TIME_FIELDS = frozenset("HhmsSa")

# Tried in order when a DATE rule receives a string.
INPUT_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y%m%d",
)


# ============================================================================
# Dates
# ============================================================================


def compile_date_pattern(pattern: str) -> Tuple[Tuple[str, Any], ...]:
    """
    Tokenize an output pattern such as ``yyyy-MM-dd'T'HH:mm:ss``.

    Returns:
        Tuple of ("lit", text) and ("field", (letter, width)) tokens

    Raises:
        ValueError: unknown pattern letter or unterminated quote
    """
    tokens = []
    literal = []
    i = 0
    n = len(pattern)

    while i < n:
        ch = pattern[i]

        if ch == "'":
            # '' is an escaped quote, otherwise read up to the closing quote
            if i + 1 < n and pattern[i + 1] == "'":
                literal.append("'")
                i += 2
                continue
            end = pattern.find("'", i + 1)
            if end == -1:
                raise ValueError(f"Unterminated quote in pattern: {pattern}")
            literal.append(pattern[i + 1:end])
            i = end + 1
            continue

        if ch.isalpha():
            if ch not in DATE_FIELDS:
                raise ValueError(f"Unknown pattern letter: {ch}")
            width = 1
            while i + width < n and pattern[i + width] == ch:
                width += 1
            if literal:
                tokens.append(("lit", "".join(literal)))
                literal = []
            tokens.append(("field", (ch, width)))
            i += width
            continue

        literal.append(ch)
        i += 1

    if literal:
        tokens.append(("lit", "".join(literal)))
    return tuple(tokens)


def _format_field(value: date, letter: str, width: int) -> str:
    if letter in TIME_FIELDS and not isinstance(value, datetime):
        raise ValueError(f"Field '{letter}' needs a time component")

    if letter in "yu":
        if width == 2:
            return f"{value.year % 100:02d}"
        return str(value.year).zfill(width)
    if letter == "M":
        if width >= 4:
            return MONTH_NAMES[value.month - 1]
        if width == 3:
            return MONTH_NAMES[value.month - 1][:3]
        return str(value.month).zfill(width)
    if letter == "d":
        return str(value.day).zfill(width)
    if letter == "E":
        name = DAY_NAMES[value.weekday()]
        return name if width >= 4 else name[:3]

    # time fields below, value is a datetime
    if letter == "H":
        return str(value.hour).zfill(width)
    if letter == "h":
        return str(value.hour % 12 or 12).zfill(width)
    if letter == "m":
        return str(value.minute).zfill(width)
    if letter == "s":
        return str(value.second).zfill(width)
    if letter == "S":
        return f"{value.microsecond:06d}".ljust(width, "0")[:width]
    if letter == "a":
        return "AM" if value.hour < 12 else "PM"

    raise ValueError(f"Unknown pattern letter: {letter}")


def format_temporal(value: date, tokens: Tuple[Tuple[str, Any], ...]) -> str:
    """Render a date or datetime with compiled pattern tokens."""
    out = []
    for kind, token in tokens:
        if kind == "lit":
            out.append(token)
        else:
            letter, width = token
            out.append(_format_field(value, letter, width))
    return "".join(out)


def parse_date_string(text: str) -> Optional[datetime]:
    """Parse ``text`` with the first matching known input format."""
    candidate = text.strip()
    for fmt in INPUT_DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return None


# ============================================================================
# Numbers
# ============================================================================


NUMBER_CHARS = "#0,."


@dataclass(frozen=True)
class NumberPattern:
    """Compiled ``#,##0.00``-style pattern."""

    prefix: str = ""
    suffix: str = ""
    min_int: int = 1
    min_frac: int = 0
    max_frac: int = 0
    grouping: int = 0
    multiplier: int = 1
    grouping_separator: str = ","
    decimal_separator: str = "."

    @classmethod
    def compile(cls, pattern: str) -> "NumberPattern":
        """Parse a positive subpattern; a ``;negative`` part is ignored."""
        positive = pattern.split(";", 1)[0]

        start = next((i for i, ch in enumerate(positive) if ch in NUMBER_CHARS), None)
        if start is None:
            raise ValueError(f"No digits in number pattern: {pattern}")
        end = start
        while end < len(positive) and positive[end] in NUMBER_CHARS:
            end += 1

        prefix, number, suffix = positive[:start], positive[start:end], positive[end:]
        int_part, _, frac_part = number.partition(".")
        if "," in frac_part:
            raise ValueError(f"Grouping separator after decimal point: {pattern}")

        grouping = 0
        if "," in int_part:
            grouping = len(int_part) - int_part.rfind(",") - 1

        multiplier = 1
        if "%" in prefix or "%" in suffix:
            multiplier = 100
        elif "‰" in prefix or "‰" in suffix:
            multiplier = 1000

        return cls(
            prefix=prefix.replace("'", ""),
            suffix=suffix.replace("'", ""),
            min_int=int_part.count("0"),
            min_frac=frac_part.count("0"),
            max_frac=frac_part.count("0") + frac_part.count("#"),
            grouping=grouping,
            multiplier=multiplier,
        )

    def format(self, value: Any) -> str:
        """Format an int, float or Decimal. Rounds HALF_EVEN."""
        number = value if isinstance(value, Decimal) else Decimal(str(value))
        if not number.is_finite():
            raise ValueError(f"Cannot format non-finite number: {value}")

        number = number * self.multiplier
        quantum = Decimal(1).scaleb(-self.max_frac)
        rounded = number.quantize(quantum, rounding=ROUND_HALF_EVEN)
        negative = rounded < 0

        digits = format(abs(rounded), "f")
        int_digits, _, frac_digits = digits.partition(".")

        frac_digits = frac_digits.ljust(self.max_frac, "0")[: self.max_frac]
        while len(frac_digits) > self.min_frac and frac_digits.endswith("0"):
            frac_digits = frac_digits[:-1]

        int_digits = int_digits.lstrip("0")
        if len(int_digits) < self.min_int:
            int_digits = int_digits.zfill(self.min_int)

        if self.grouping and int_digits:
            groups = []
            while len(int_digits) > self.grouping:
                groups.insert(0, int_digits[-self.grouping:])
                int_digits = int_digits[: -self.grouping]
            groups.insert(0, int_digits)
            int_digits = self.grouping_separator.join(groups)

        body = int_digits
        if frac_digits:
            body = f"{int_digits}{self.decimal_separator}{frac_digits}"
        if not body:
            body = "0"

        sign = "-" if negative else ""
        return f"{sign}{self.prefix}{body}{self.suffix}"
