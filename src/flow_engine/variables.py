"""Variable bag holding the run-time values shared by the activities of an execution."""
from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, Union

from .errors import VariableTypeError

_MISSING = object()

SCALAR_TYPES: Tuple[Type[Any], ...] = (bool, int, float, str)


def check_value(value: Any, path: str = "value") -> None:
    """Raise VariableTypeError unless value is a primitive, string, record or list."""
    if value is None or isinstance(value, SCALAR_TYPES):
        return
    if isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            check_value(item, f"{path}[{index}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise VariableTypeError(f"{path} has a non-string key {key!r}")
            check_value(item, f"{path}.{key}")
        return
    raise VariableTypeError(
        f"{path} of type {type(value).__name__} cannot be stored as a variable"
    )


def _normalize(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_normalize(item) for item in value]
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    return value


class VariableBag(MutableMapping):
    """String keyed store restricted to null, primitive, string, record and list values."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self[key] = value

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if not isinstance(key, str):
            raise VariableTypeError(f"Variable names must be strings, got {key!r}")
        check_value(value, key)
        self._values[key] = _normalize(value)

    def __delitem__(self, key: str) -> None:
        del self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"VariableBag({self._values!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, VariableBag):
            return self._values == other._values
        if isinstance(other, dict):
            return self._values == other
        return NotImplemented

    def _typed(self, key: str, expected: Union[Type[Any], Tuple[Type[Any], ...]], label: str, default: Any) -> Any:
        if key not in self._values:
            if default is _MISSING:
                raise KeyError(key)
            return default
        value = self._values[key]
        # bool is an int subclass; keep the two apart
        if label != "bool" and isinstance(value, bool):
            raise VariableTypeError(f"Variable {key} is a bool, not {label}")
        if not isinstance(value, expected):
            raise VariableTypeError(
                f"Variable {key} is a {type(value).__name__}, not {label}"
            )
        return value

    def get_str(self, key: str, default: Any = _MISSING) -> Optional[str]:
        return self._typed(key, str, "str", default)

    def get_int(self, key: str, default: Any = _MISSING) -> Optional[int]:
        return self._typed(key, int, "int", default)

    def get_float(self, key: str, default: Any = _MISSING) -> Optional[float]:
        value = self._typed(key, (int, float), "float", default)
        return float(value) if isinstance(value, (int, float)) else value

    def get_bool(self, key: str, default: Any = _MISSING) -> Optional[bool]:
        return self._typed(key, bool, "bool", default)

    def get_list(self, key: str, default: Any = _MISSING) -> Optional[List[Any]]:
        return self._typed(key, list, "list", default)

    def get_record(self, key: str, default: Any = _MISSING) -> Optional[Dict[str, Any]]:
        return self._typed(key, dict, "record", default)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "VariableBag":
        return cls(payload or {})
