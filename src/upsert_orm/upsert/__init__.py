"""The upsert pipeline: resolve identities, plan changes, execute, reconcile children."""

from upsert_orm.upsert.changes import ChangeSet, ChangeType, DBChange
from upsert_orm.upsert.children import ChildReconciler
from upsert_orm.upsert.executor import BatchExecutor
from upsert_orm.upsert.planner import ChangePlanner
from upsert_orm.upsert.resolver import IdentityResolver, Resolution, encode_key

__all__ = [
    "BatchExecutor",
    "ChangePlanner",
    "ChangeSet",
    "ChangeType",
    "ChildReconciler",
    "DBChange",
    "IdentityResolver",
    "Resolution",
    "encode_key",
]
