"""Audit trail for provider connection events, written in the caller's transaction."""

from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.models.audit_log import AuditLog

OAUTH_CONNECTED = "oauth_connected"
OAUTH_DISCONNECTED = "oauth_disconnected"
OAUTH_CSRF_MISMATCH = "oauth_csrf_mismatch"
PROVIDER_DEREGISTERED = "provider_deregistered"

CREDENTIAL_RESOURCE = "provider_credential"


async def log_provider_event(
    session: AsyncSession,
    user_id: int | None,
    action: str,
    provider: str,
    details: dict | None = None,
    ip_address: str | None = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource=CREDENTIAL_RESOURCE,
        resource_id=provider,
        details=details,
        ip_address=ip_address,
    )
    session.add(entry)
    await session.flush()
    return entry
