"""Identifier validation for dynamic source-data queries."""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List

logger = logging.getLogger(__name__)

COLUMN_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_MINT = object()


@dataclass(frozen=True)
class TrustedIdentifier:
    """A table or column name that passed SourceGuard. Only SourceGuard creates these."""

    name: str
    _token: object = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self._token is not _MINT:
            raise TypeError("TrustedIdentifier can only be issued by SourceGuard")

    def quoted(self) -> str:
        return f'"{self.name}"'

    def __str__(self) -> str:
        return self.name


class SourceGuard:
    """Validates source tables against an allow-list and column names against a safe pattern."""

    def __init__(self, allowed_tables: Iterable[str]):
        self.allowed_tables = {name.upper() for name in allowed_tables}

    def is_table_allowed(self, name: str) -> bool:
        return bool(name) and name.upper() in self.allowed_tables

    @staticmethod
    def is_column_valid(name: str) -> bool:
        return bool(name) and COLUMN_NAME_PATTERN.match(name) is not None

    def table(self, name: str) -> TrustedIdentifier:
        """Raises ValueError if the table is not allowed."""
        if not self.is_table_allowed(name):
            raise ValueError(f"Table '{name}' is not allowed")
        return TrustedIdentifier(name.upper(), _MINT)

    def column(self, name: str) -> TrustedIdentifier:
        """Raises ValueError if the column name is unsafe."""
        if not self.is_column_valid(name):
            raise ValueError(f"Invalid column name '{name}'")
        return TrustedIdentifier(name, _MINT)

    def columns(self, names: Iterable[str]) -> List[TrustedIdentifier]:
        """Valid, distinct columns in input order; invalid names are dropped with a warning."""
        trusted = []
        seen = set()
        for name in names:
            if name in seen:
                continue
            seen.add(name)
            if not self.is_column_valid(name):
                logger.warning(f"Skipping invalid column name: {name}")
                continue
            trusted.append(TrustedIdentifier(name, _MINT))
        return trusted
