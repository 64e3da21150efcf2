"""Session state held by the SessionManager."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ecountgate.domain.models.common import AccountId, EpochMs, SessionId, Zone

# The session is treated as expired this long before its recorded expiry.
SESSION_SAFETY_MARGIN_MS = 5 * 60 * 1000
# Validity window granted by a successful login.
SESSION_VALIDITY_MS = 12 * 60 * 60 * 1000


@dataclass
class SessionState:
    """Zone is permanent per account; session_id and expires_at are transient."""
    account_id: AccountId
    zone: Optional[Zone] = None
    session_id: Optional[SessionId] = None
    expires_at: Optional[EpochMs] = None

    def is_valid_at(self, now_ms: EpochMs) -> bool:
        if not self.session_id or not self.expires_at:
            return False
        return now_ms < self.expires_at - SESSION_SAFETY_MARGIN_MS

    def to_file_dict(self, saved_at: EpochMs) -> Dict[str, Any]:
        return {
            "accountId": self.account_id,
            "zone": self.zone,
            "sessionId": self.session_id,
            "expiresAt": self.expires_at,
            "savedAt": saved_at,
        }
