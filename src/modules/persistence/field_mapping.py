"""
Declarative mapping between local progression fields and remote columns.

Every field the reconciler moves between tiers is described once here.
Coercion, defaults, regression guarding and column limits are all driven
from the table; nothing downstream switches on individual field names.

Columns
-------
==============================  ==============================  =========
local name                      remote column                   notes
==============================  ==============================  =========
experience                      xp                              guarded, int32
level                           level                           derived
currency                        currency                        guarded, int32
current_chapter                 current_chapter
chapter_ceiling                 chapter_ceiling
current_module_in_chapter       current_module_in_chapter       may lag
completed_modules_in_chapter    completed_modules_in_chapter    may lag
chapter_history                 chapter_history                 may lag
slots                           module_slots
quests                          quests
==============================  ==============================  =========
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from src.modules.shared.constants import SLOTS_PER_CHAPTER

INT32_MAX = 2_147_483_647


class FieldKind(Enum):
    COUNTER = "counter"  # non-negative integer
    INDEX = "index"  # bounded small integer
    INT_LIST = "int_list"
    JSON_LIST = "json_list"
    JSON_OBJECT = "json_object"


@dataclass(frozen=True)
class Coerced:
    value: Any
    valid: bool


@dataclass(frozen=True)
class FieldSpec:
    local_name: str
    remote_name: str
    kind: FieldKind
    default: Any
    optional: bool = False
    regression_guarded: bool = False
    column_max: Optional[int] = None
    minimum: int = 0
    maximum: Optional[int] = None

    def default_value(self) -> Any:
        return copy.deepcopy(self.default)

    def exceeds_column(self, value: Any) -> bool:
        return (
            self.column_max is not None
            and isinstance(value, int)
            and not isinstance(value, bool)
            and value > self.column_max
        )

    def coerce(self, value: Any) -> Coerced:
        """
        Normalize a stored value. ``valid`` is False when the value was
        corrupted and had to be replaced by the default.
        """
        if self.kind in (FieldKind.COUNTER, FieldKind.INDEX):
            return self._coerce_int(value)
        if self.kind is FieldKind.INT_LIST:
            if not isinstance(value, (list, tuple, set)):
                return Coerced(self.default_value(), value is None)
            items = [v for v in value if isinstance(v, int) and not isinstance(v, bool) and v >= 0]
            return Coerced(items, len(items) == len(value))
        if self.kind is FieldKind.JSON_LIST:
            if isinstance(value, list):
                return Coerced(copy.deepcopy(value), True)
            return Coerced(self.default_value(), value is None)
        if isinstance(value, dict):
            return Coerced(copy.deepcopy(value), True)
        return Coerced(self.default_value(), value is None)

    def _coerce_int(self, value: Any) -> Coerced:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return Coerced(self.default_value(), value is None)
        if isinstance(value, float):
            if not math.isfinite(value):
                return Coerced(self.default_value(), False)
            value = int(value)
        if value < self.minimum or (self.maximum is not None and value > self.maximum):
            return Coerced(self.default_value(), False)
        return Coerced(value, True)


class FieldMappingTable:
    """
    Lookup and conversion over a set of ``FieldSpec`` rows.

    Example
    -------
    >>> FIELD_MAPPING.to_remote({"experience": 40})
    {'xp': 40}
    >>> FIELD_MAPPING.from_remote({"xp": 40, "updated_at": "..."})
    {'experience': 40}
    """

    def __init__(self, specs: Iterable[FieldSpec]) -> None:
        self._specs: Tuple[FieldSpec, ...] = tuple(specs)
        self._by_local: Dict[str, FieldSpec] = {s.local_name: s for s in self._specs}
        self._by_remote: Dict[str, FieldSpec] = {s.remote_name: s for s in self._specs}

    def __iter__(self):
        return iter(self._specs)

    def __contains__(self, local_name: object) -> bool:
        return local_name in self._by_local

    @property
    def local_names(self) -> List[str]:
        return [s.local_name for s in self._specs]

    def spec(self, local_name: str) -> FieldSpec:
        return self._by_local[local_name]

    def by_remote(self, remote_name: str) -> Optional[FieldSpec]:
        return self._by_remote.get(remote_name)

    def guarded(self, names: Optional[Iterable[str]] = None) -> List[FieldSpec]:
        if names is not None:
            wanted = set(names)
            return [s for s in self._specs if s.local_name in wanted]
        return [s for s in self._specs if s.regression_guarded]

    def optional(self) -> List[FieldSpec]:
        return [s for s in self._specs if s.optional]

    def defaults(self) -> Dict[str, Any]:
        return {s.local_name: s.default_value() for s in self._specs}

    def to_remote(self, local_fields: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            self._by_local[name].remote_name: value
            for name, value in local_fields.items()
            if name in self._by_local
        }

    def from_remote(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Local view of a remote row; columns the row lacks stay absent."""
        return {
            spec.local_name: row[spec.remote_name]
            for spec in self._specs
            if spec.remote_name in row
        }

    def local_name_for(self, remote_name: str) -> Optional[str]:
        spec = self._by_remote.get(remote_name)
        return spec.local_name if spec else None


FIELD_MAPPING = FieldMappingTable(
    [
        FieldSpec("experience", "xp", FieldKind.COUNTER, 0, regression_guarded=True, column_max=INT32_MAX),
        FieldSpec("level", "level", FieldKind.COUNTER, 1, minimum=1),
        FieldSpec("currency", "currency", FieldKind.COUNTER, 0, regression_guarded=True, column_max=INT32_MAX),
        FieldSpec("current_chapter", "current_chapter", FieldKind.COUNTER, 1, minimum=1),
        FieldSpec("chapter_ceiling", "chapter_ceiling", FieldKind.COUNTER, 1, minimum=1),
        FieldSpec(
            "current_module_in_chapter",
            "current_module_in_chapter",
            FieldKind.INDEX,
            0,
            optional=True,
            maximum=SLOTS_PER_CHAPTER - 1,
        ),
        FieldSpec("completed_modules_in_chapter", "completed_modules_in_chapter", FieldKind.INT_LIST, [], optional=True),
        FieldSpec("chapter_history", "chapter_history", FieldKind.INT_LIST, [], optional=True),
        FieldSpec("slots", "module_slots", FieldKind.JSON_LIST, []),
        FieldSpec("quests", "quests", FieldKind.JSON_OBJECT, {}),
    ]
)
