"""
Line tokenizer for the -Y output format.

Every -Y line looks like ``command:section:HEADER:version:reserved:reserved:col...:``
for headers and ``command:section:0:1:::value...:`` for data rows. Fields are
split on ':' and never collapsed, so empty fields keep column alignment.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple, Union

from .errors import FormatError

DELIMITER = ':'
HEADER_MARKER = 'HEADER'

# command, section, HEADER/record-type
MIN_FIELDS = 3


@dataclass(frozen=True)
class HeaderDescriptor:
    """Column layout for all following rows with the same (command, section) tag."""
    command: str
    section: str
    columns: Tuple[str, ...]
    line_number: int

    @property
    def tag(self) -> Tuple[str, str]:
        return (self.command, self.section)

    def index_of(self, name: str) -> int:
        """Position of the first column called ``name`` or -1."""
        try:
            return self.columns.index(name)
        except ValueError:
            return -1


@dataclass(frozen=True)
class RawRecord:
    """One data row, still untyped. Values pair with the governing header by position."""
    command: str
    section: str
    fields: Tuple[str, ...]
    line_number: int
    raw_line: str

    @property
    def tag(self) -> Tuple[str, str]:
        return (self.command, self.section)

    @property
    def version(self) -> str:
        """Record format version as reported in the row (field 3)."""
        return self.fields[3] if len(self.fields) > 3 else ''

    def pair_with(self, header: HeaderDescriptor) -> List[Tuple[str, str]]:
        """
        Zip the row with its header's column names in source order.

        Raises:
            FormatError: if the row and the header disagree on field count
        """
        if len(self.fields) != len(header.columns):
            raise FormatError(
                self.line_number, self.raw_line,
                f"{self.command}:{self.section} row has {len(self.fields)} fields, "
                f"header on line {header.line_number} declares {len(header.columns)}"
            )
        return list(zip(header.columns, self.fields))


Token = Union[HeaderDescriptor, RawRecord]


def split_fields(line: str) -> List[str]:
    """Split on the delimiter, keeping empty fields."""
    return line.rstrip('\r\n').split(DELIMITER)


def tokenize_line(line: str, line_number: int) -> Token:
    """
    Turn one line into a header descriptor or a raw record.

    Args:
        line: a single line of -Y output
        line_number: 1-based position of the line in its blob

    Raises:
        FormatError: if the line is not a -Y line at all
    """
    tokens = split_fields(line)
    if len(tokens) < MIN_FIELDS or not tokens[0].strip():
        raise FormatError(line_number, line, "not a -Y record (missing command/section/type fields)")

    command = tokens[0].strip()
    section = tokens[1].strip()

    if tokens[2].strip() == HEADER_MARKER:
        return HeaderDescriptor(
            command=command,
            section=section,
            columns=tuple(token.strip() for token in tokens),
            line_number=line_number,
        )

    return RawRecord(
        command=command,
        section=section,
        fields=tuple(tokens),
        line_number=line_number,
        raw_line=line.rstrip('\r\n'),
    )


def encode_header(header: HeaderDescriptor) -> str:
    """Render a header back into its textual form."""
    return DELIMITER.join(header.columns)


def encode_record(values: Iterable[str]) -> str:
    """Render raw row values back into a -Y line."""
    return DELIMITER.join(values)
