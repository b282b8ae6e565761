from batchkeeper.models.user import User, UserBatchEntitlement
from batchkeeper.models.batch import Batch, EnrolledToken
from batchkeeper.models.reconcile_run import ReconcileRun

__all__ = [
    "User",
    "UserBatchEntitlement",
    "Batch",
    "EnrolledToken",
    "ReconcileRun",
]
