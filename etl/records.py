"""
Record Types

Data carriers passed between the pipeline stages:
raw rows from extraction, validation outcomes, and rejected-row reports.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class RawRow:
    """
    One extracted row with named fields.

    index ties the row back to its source location (sheet row number or
    data line of a file) so status feedback can be written to it.
    """
    index: int
    fields: Mapping[str, Optional[str]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "fields": dict(self.fields)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawRow":
        return cls(index=int(data["index"]), fields=data.get("fields") or {})


@dataclass(frozen=True)
class NormalizedRecord:
    """Typed column values ready for insertion, plus the originating row index."""
    row_index: Optional[int]
    values: Dict[str, Any]

    def get(self, column: str, default: Any = None) -> Any:
        return self.values.get(column, default)


@dataclass(frozen=True)
class FieldError:
    field: str
    label: str
    reason: str

    def __str__(self) -> str:
        return f"{self.label}: {self.reason}"


@dataclass(frozen=True)
class Accepted:
    record: NormalizedRecord

    @property
    def is_valid(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    row_index: Optional[int]
    errors: Tuple[FieldError, ...]

    @property
    def is_valid(self) -> bool:
        return False

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(error.field for error in self.errors)

    @property
    def message(self) -> str:
        return "; ".join(str(error) for error in self.errors)


ValidationResult = Union[Accepted, Rejected]
