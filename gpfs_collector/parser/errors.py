"""
Error taxonomy for -Y output parsing.

FormatError and DecodeError are per-row failures: the parser yields them in
place of an entity and keeps going. UnknownSection is not an error at all,
it marks rows of a section this library has no schema for.
"""

from dataclasses import dataclass
from typing import Optional


class ParseError(Exception):
    """Base class for row-level parse failures."""


class FormatError(ParseError):
    """Malformed line, field count mismatch or missing mandatory column."""

    def __init__(self, line_number: int, raw_line: str, message: str,
                 column: Optional[str] = None, entity_type: Optional[str] = None):
        self.line_number = line_number
        self.raw_line = raw_line
        self.message = message
        self.column = column
        self.entity_type = entity_type
        super().__init__(f"line {line_number}: {message}")


class DecodeError(ParseError):
    """A single field could not be converted to its declared type."""

    def __init__(self, entity_type: str, column: str, message: str,
                 line_number: Optional[int] = None):
        self.entity_type = entity_type
        self.column = column
        self.message = message
        self.line_number = line_number
        super().__init__(f"{entity_type}.{column}: {message}")

    def at_line(self, line_number: int) -> 'DecodeError':
        """Attach the source line number once the orchestrator knows it."""
        self.line_number = line_number
        return self

    def __str__(self) -> str:
        prefix = f"line {self.line_number}: " if self.line_number is not None else ""
        return f"{prefix}{self.entity_type}.{self.column}: {self.message}"


@dataclass(frozen=True)
class UnknownSection:
    """Marker for a data row under a header tag with no known schema."""
    command: str
    section: str
    line_number: int
    raw_line: str

    @property
    def tag(self) -> str:
        return f"{self.command}:{self.section}"
