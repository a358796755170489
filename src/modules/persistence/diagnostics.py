"""
Data-integrity diagnostics channel.

When the remote store cannot hold a value (numeric column overflow) the
value stays in the local fallback and a warning is recorded here. The
write still reports success; operators watch ``count`` and ``summary()``
to notice warnings accumulating before a column migration.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.core.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IntegrityWarning:
    user_id: str
    field: str
    remote_column: str
    value: Any
    column_max: Optional[int]
    message: str
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["recorded_at"] = self.recorded_at.isoformat()
        return data


class IntegrityDiagnostics:
    """Bounded in-process log of data-integrity warnings."""

    def __init__(self, max_entries: int = 500) -> None:
        self._warnings: List[IntegrityWarning] = []
        self._max_entries = max_entries
        self._total = 0

    def record(
        self,
        user_id: str,
        field_name: str,
        remote_column: str,
        value: Any,
        column_max: Optional[int] = None,
        message: str = "value exceeds remote column range",
    ) -> IntegrityWarning:
        warning = IntegrityWarning(
            user_id=user_id,
            field=field_name,
            remote_column=remote_column,
            value=value,
            column_max=column_max,
            message=message,
        )
        self._warnings.append(warning)
        if len(self._warnings) > self._max_entries:
            del self._warnings[0]
        self._total += 1

        logger.error(
            "Data integrity warning: value retained locally",
            extra={
                "user_id": user_id,
                "field": field_name,
                "remote_column": remote_column,
                "value": value,
                "column_max": column_max,
                "integrity_warning_count": self._total,
            },
        )
        return warning

    @property
    def warnings(self) -> List[IntegrityWarning]:
        return list(self._warnings)

    @property
    def count(self) -> int:
        return self._total

    def summary(self) -> Dict[str, Any]:
        by_field = Counter(w.field for w in self._warnings)
        latest = self._warnings[-1].to_dict() if self._warnings else None
        return {
            "count": self._total,
            "retained": len(self._warnings),
            "by_field": dict(by_field),
            "latest": latest,
        }

    def clear(self) -> None:
        self._warnings.clear()
        self._total = 0
