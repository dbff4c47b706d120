# backend/audit.py
# Audit trail for sign-in / sign-out and other security-relevant events

import logging
from typing import Any, Dict, Optional

try:
    from backend.timestamps import utc_now
except ModuleNotFoundError:
    from timestamps import utc_now

logger = logging.getLogger("project.audit")

# Never written to the audit log
_REDACTED_KEYS = {"password", "secret", "token", "access_token", "api_key"}


def log_audit_event(event: str, user_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Emit one audit record through the project.audit logger and return it."""
    entry = {
        "event": event,
        "user_id": user_id or "anonymous",
        "timestamp": utc_now().isoformat(),
        "details": {
            k: ("[REDACTED]" if k.lower() in _REDACTED_KEYS else v)
            for k, v in (details or {}).items()
        },
    }
    logger.info("[AUDIT] %s user=%s details=%s", entry["event"], entry["user_id"], entry["details"])
    return entry
