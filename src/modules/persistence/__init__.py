"""
Tiered persistence: field mapping, remote store, local fallback,
integrity diagnostics and the per-user reconciler.
"""

from src.modules.persistence.diagnostics import IntegrityDiagnostics, IntegrityWarning
from src.modules.persistence.fallback_store import FallbackStore
from src.modules.persistence.field_mapping import (
    FIELD_MAPPING,
    INT32_MAX,
    FieldKind,
    FieldMappingTable,
    FieldSpec,
)
from src.modules.persistence.reconciler import ProgressReconciler, WriteResult
from src.modules.persistence.remote_store import (
    RemoteErrorCode,
    RemoteProgressStore,
    RemoteStoreError,
    RemoteUnavailableError,
    SqlAlchemyRemoteStore,
)

__all__ = [
    "INT32_MAX",
    "FIELD_MAPPING",
    "FallbackStore",
    "FieldKind",
    "FieldMappingTable",
    "FieldSpec",
    "IntegrityDiagnostics",
    "IntegrityWarning",
    "ProgressReconciler",
    "RemoteErrorCode",
    "RemoteProgressStore",
    "RemoteStoreError",
    "RemoteUnavailableError",
    "SqlAlchemyRemoteStore",
    "WriteResult",
]
