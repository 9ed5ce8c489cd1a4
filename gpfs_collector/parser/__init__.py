"""Parsing of the -Y structured output of the file system admin commands."""

from .errors import ParseError, FormatError, DecodeError, UnknownSection
from .tokenizer import HeaderDescriptor, RawRecord, tokenize_line, encode_header, encode_record
from .binder import BoundRow, bind
from .decoders import DECODERS
from .output_parser import ParseItem, ParseSummary, parse_output, collect_entities

__all__ = ['ParseError', 'FormatError', 'DecodeError', 'UnknownSection',
           'HeaderDescriptor', 'RawRecord', 'tokenize_line', 'encode_header', 'encode_record',
           'BoundRow', 'bind', 'DECODERS',
           'ParseItem', 'ParseSummary', 'parse_output', 'collect_entities']
