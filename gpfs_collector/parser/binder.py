"""
Schema binder: pairs a raw row with its header and the declared column schema
for its entity type, and hands out typed values by column name.
"""

import re
from typing import Dict, List, Optional, Type
from urllib.parse import unquote

from ..schema.columns import ENTITY_SCHEMAS, ColumnKind, ColumnSpec, EntityType
from ..schema.models import (
    EnumeratedStatus, GraceState, I64_MAX, I64_MIN, U64_MAX,
)
from .errors import DecodeError, FormatError
from .tokenizer import HeaderDescriptor, RawRecord

_INTEGER_RE = re.compile(r'^[+-]?\d+$')

KIB = 1024


class BoundRow:
    """
    Typed, name-based access to one -Y data row.

    Only columns declared in the entity schema can be read, and only through
    the accessor matching their declared kind. Undeclared columns are kept in
    ``extra`` so they survive for display and debugging.
    """

    def __init__(self, entity_type: EntityType, values: Dict[str, str],
                 schema: Dict[str, ColumnSpec], line_number: int):
        self.entity_type = entity_type
        self.values = values
        self.schema = schema
        self.line_number = line_number

    @property
    def extra(self) -> Dict[str, str]:
        """Columns present in the row but not part of the schema."""
        return {k: v for k, v in self.values.items() if k not in self.schema}

    def has(self, name: str) -> bool:
        """True when the column is present and non-empty."""
        return bool(self.values.get(name, '').strip())

    # ------------------------------------------------------------------
    # accessors
    # ------------------------------------------------------------------

    def string(self, name: str) -> str:
        self._spec(name, ColumnKind.STRING)
        return self._text(name)

    def optional_string(self, name: str) -> Optional[str]:
        value = self.string(name)
        return value or None

    def integer(self, name: str) -> Optional[int]:
        """Unsigned 64-bit integer; None when an optional column is absent."""
        return self._int(self._spec(name, ColumnKind.INTEGER), signed=False)

    def signed(self, name: str) -> Optional[int]:
        return self._int(self._spec(name, ColumnKind.SIGNED), signed=True)

    def kilobytes(self, name: str, signed: bool = False) -> Optional[int]:
        """Kilobyte column converted to bytes, overflow checked after scaling."""
        spec = self._spec(name, ColumnKind.SIGNED_KILOBYTES if signed else ColumnKind.KILOBYTES)
        value = self._int(spec, signed=signed)
        if value is None:
            return None
        return self._check_range(name, value * KIB, signed)

    def boolean(self, name: str) -> bool:
        raw = self._required_raw(self._spec(name, ColumnKind.BOOLEAN))
        text = raw.strip().lower()
        if text in ('yes', '1'):
            return True
        if text in ('no', '0'):
            return False
        raise self._error(name, f"unknown boolean value: {raw!r}")

    def status(self, name: str, status_cls: Type[EnumeratedStatus]) -> EnumeratedStatus:
        """Enumerated status; unrecognised text becomes the unknown variant."""
        return status_cls.parse(self._required_raw(self._spec(name, ColumnKind.STATUS)))

    def grace(self, name: str) -> GraceState:
        self._spec(name, ColumnKind.GRACE)
        raw = self.values.get(name, '')
        try:
            return GraceState.parse(unquote(raw))
        except ValueError as e:
            raise self._error(name, str(e))

    def string_list(self, name: str) -> List[str]:
        self._spec(name, ColumnKind.LIST)
        value = self._text(name)
        return [item.strip() for item in value.split(',') if item.strip()]

    def timestamp(self, name: str) -> float:
        raw = self._required_raw(self._spec(name, ColumnKind.TIMESTAMP))
        try:
            return float(raw.strip())
        except ValueError:
            raise self._error(name, f"invalid timestamp: {raw!r}")

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _spec(self, name: str, kind: ColumnKind) -> ColumnSpec:
        """
        Schema entry for ``name``, which must be declared with ``kind``.

        Raises:
            KeyError: if the column is not declared for this entity type
            TypeError: if the column is declared with another kind
        """
        try:
            spec = self.schema[name]
        except KeyError:
            raise KeyError(f"column {name!r} is not declared for {self.entity_type.value}")
        if spec.kind is not kind:
            raise TypeError(f"column {name!r} of {self.entity_type.value} is declared "
                            f"{spec.kind.value}, read as {kind.value}")
        return spec

    def _text(self, name: str) -> str:
        return unquote(self.values.get(name, '').strip())

    def _required_raw(self, spec: ColumnSpec) -> str:
        raw = self.values.get(spec.name)
        if raw is None or (spec.required and not raw.strip()):
            raise self._error(spec.name, "value missing")
        return raw

    def _int(self, spec: ColumnSpec, signed: bool) -> Optional[int]:
        name = spec.name
        raw = self.values.get(name, '').strip()
        if not raw:
            if spec.required:
                raise self._error(name, "value missing")
            return None

        if not _INTEGER_RE.match(raw):
            raise self._error(name, f"invalid integer: {raw!r}")

        return self._check_range(name, int(raw), signed)

    def _check_range(self, name: str, value: int, signed: bool) -> int:
        if signed:
            if value < I64_MIN or value > I64_MAX:
                raise self._error(name, f"value {value} out of signed 64-bit range")
        elif value < 0 or value > U64_MAX:
            raise self._error(name, f"value {value} out of unsigned 64-bit range")
        return value

    def _error(self, name: str, message: str) -> DecodeError:
        return DecodeError(self.entity_type.value, name, message, line_number=self.line_number)


def bind(record: RawRecord, header: HeaderDescriptor, entity_type: EntityType) -> BoundRow:
    """
    Bind a raw record to its header and entity schema.

    Raises:
        FormatError: on a field count mismatch, or when a mandatory column of
            the entity schema is missing from the header
    """
    pairs = record.pair_with(header)

    values: Dict[str, str] = {}
    for name, value in pairs:
        # first occurrence wins ('reserved' repeats in every header)
        values.setdefault(name, value)

    schema = ENTITY_SCHEMAS[entity_type]
    for spec in schema.values():
        if spec.required and spec.name not in values:
            raise FormatError(
                record.line_number, record.raw_line,
                f"missing mandatory column '{spec.name}' for entity type {entity_type.value}",
                column=spec.name, entity_type=entity_type.value,
            )

    return BoundRow(entity_type, values, schema, record.line_number)


__all__ = ['BoundRow', 'bind', 'KIB']
