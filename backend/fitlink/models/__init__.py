from fitlink.models.user import User
from fitlink.models.provider_credential import ProviderCredential
from fitlink.models.oauth_temp_token import OAuthTempToken
from fitlink.models.sync_status import SyncStatus
from fitlink.models.backfill_request import BackfillRequest
from fitlink.models.activities import GarminActivity, StravaActivity
from fitlink.models.garmin_summaries import GarminDailySummary, GarminSleepSummary
from fitlink.models.training_session import TrainingSession
from fitlink.models.audit_log import AuditLog

__all__ = [
    "User",
    "ProviderCredential",
    "OAuthTempToken",
    "SyncStatus",
    "BackfillRequest",
    "StravaActivity",
    "GarminActivity",
    "GarminDailySummary",
    "GarminSleepSummary",
    "TrainingSession",
    "AuditLog",
]
