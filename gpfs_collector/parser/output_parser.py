"""
Command output parser.

Drives tokenizer, binder and decoders over a complete -Y output blob and
yields one item per data row, in source order. Row failures are yielded in
place so one bad row never hides the rest of the output.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from ..schema.columns import EntityType, entity_type_for
from .binder import bind
from .decoders import DECODERS
from .errors import DecodeError, FormatError, ParseError, UnknownSection
from .tokenizer import HeaderDescriptor, tokenize_line

LOG = logging.getLogger(__name__)

# mmrepquota prints banner lines starting with this prefix
BANNER_PREFIX = '***'


@dataclass(frozen=True)
class ParseItem:
    """One parser result: an entity, a row failure, or an UnknownSection marker."""
    entity_type: EntityType
    value: Any
    line_number: int

    @property
    def is_error(self) -> bool:
        return isinstance(self.value, ParseError)

    @property
    def is_unknown(self) -> bool:
        return isinstance(self.value, UnknownSection)

    @property
    def is_entity(self) -> bool:
        return not (self.is_error or self.is_unknown)


def _lines(text: Union[str, bytes, Iterable[str]]) -> Iterable[str]:
    if isinstance(text, bytes):
        text = text.decode('utf-8', errors='replace')
    if isinstance(text, str):
        return text.split('\n')
    return text


def parse_output(text: Union[str, bytes, Iterable[str]],
                 filesystem: Optional[str] = None) -> Iterator[ParseItem]:
    """
    Parse -Y output lazily.

    Args:
        text: the whole output of one or more commands, or an iterable of lines
        filesystem: file system the output belongs to, for commands such as
            mmdf and mmlsdisk whose rows do not name it

    Yields:
        ParseItem for every data row. Header lines, blank lines and banner
        lines produce nothing.
    """
    headers: Dict[Tuple[str, str], HeaderDescriptor] = {}
    reported_unknown = set()

    for line_number, line in enumerate(_lines(text), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith(BANNER_PREFIX):
            continue

        try:
            token = tokenize_line(line, line_number)
        except FormatError as e:
            yield ParseItem(EntityType.UNKNOWN, e, line_number)
            continue

        if isinstance(token, HeaderDescriptor):
            # a new header replaces the layout for its tag only
            headers[token.tag] = token
            continue

        entity_type = entity_type_for(token.command, token.section)
        if entity_type is None:
            if token.tag not in reported_unknown:
                reported_unknown.add(token.tag)
                LOG.debug(f"No schema for section {token.command}:{token.section} (first seen on line {line_number})")
            yield ParseItem(
                EntityType.UNKNOWN,
                UnknownSection(token.command, token.section, line_number, token.raw_line),
                line_number,
            )
            continue

        header = headers.get(token.tag)
        if header is None:
            yield ParseItem(entity_type, FormatError(
                line_number, token.raw_line,
                f"data row for {token.command}:{token.section} before any header",
                entity_type=entity_type.value,
            ), line_number)
            continue

        try:
            row = bind(token, header, entity_type)
            entity = DECODERS[entity_type](row, filesystem)
        except FormatError as e:
            yield ParseItem(entity_type, e, line_number)
            continue
        except DecodeError as e:
            if e.line_number is None:
                e.at_line(line_number)
            yield ParseItem(entity_type, e, line_number)
            continue

        yield ParseItem(entity_type, entity, line_number)


def collect_entities(items: Iterable[ParseItem], entity_type: EntityType) -> List[Any]:
    """Successfully decoded entities of one type, dropping failures and other types."""
    return [item.value for item in items if item.entity_type is entity_type and item.is_entity]


@dataclass
class ParseSummary:
    """Per-type tallies of a parse run."""
    entities: Counter = field(default_factory=Counter)
    failures: Counter = field(default_factory=Counter)
    unknown: Counter = field(default_factory=Counter)
    errors: List[ParseError] = field(default_factory=list)

    def add(self, item: ParseItem) -> ParseItem:
        if item.is_unknown:
            self.unknown[item.value.tag] += 1
        elif item.is_error:
            self.failures[item.entity_type] += 1
            self.errors.append(item.value)
        else:
            self.entities[item.entity_type] += 1
        return item

    def track(self, items: Iterable[ParseItem]) -> Iterator[ParseItem]:
        """Pass items through while counting them."""
        for item in items:
            yield self.add(item)

    def failed(self, entity_type: Optional[EntityType] = None) -> bool:
        if entity_type is None:
            return bool(sum(self.failures.values()))
        return self.failures[entity_type] > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entities': {k.value: v for k, v in self.entities.items()},
            'failures': {k.value: v for k, v in self.failures.items()},
            'unknown_sections': dict(self.unknown),
        }
