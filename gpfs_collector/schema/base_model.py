from dataclasses import fields
from datetime import timedelta
from enum import Enum
from typing import Any, Dict
import re


class BaseModel:
    """
    Mixin for decoded -Y entities.

    Every entity keeps the raw row it was decoded from in ``_raw_data``
    (column name -> raw string) so columns that are not part of the declared
    schema stay reachable without the decoders ever reading them.
    """

    @classmethod
    def camel_to_snake(cls, camel_case: str) -> str:
        """Convert camelCase string to snake_case"""
        # Handle empty strings
        if not camel_case:
            return camel_case

        snake_case = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', camel_case)
        return snake_case.lower()

    def get_raw(self, key: str, default: Any = None) -> Any:
        """Access any column from the raw row"""
        return getattr(self, '_raw_data', {}).get(key, default)

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        """
        Plain dictionary view for printing and JSON output.

        Enums become their value, durations become seconds, nested models
        are flattened recursively. With ``include_raw`` the undeclared raw
        columns are added under snake_case keys.
        """
        result: Dict[str, Any] = {}
        for f in fields(self):
            if f.name == '_raw_data':
                continue
            result[f.name] = _plain(getattr(self, f.name))

        if include_raw:
            for key, value in getattr(self, '_raw_data', {}).items():
                snake = self.camel_to_snake(key)
                if snake and snake not in result:
                    result[snake] = value

        return result


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (frozenset, set)):
        return sorted(_plain(v) for v in value)
    if isinstance(value, (tuple, list)):
        return [_plain(v) for v in value]
    if hasattr(value, 'to_plain'):
        return value.to_plain()
    return value
