"""
Share Service

Read-only share links over a user's portfolio, stored in `portfolio_shares`.
A share is valid while it is neither revoked nor expired. Scopes are ranked
overview < full < full_with_history; a token satisfies any scope at or below
its own.

Token lookups use the service-role client because the caller is anonymous.
Every failure on the token path resolves to "not found".
"""

import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.authorization import ShareNotFoundError

logger = logging.getLogger(__name__)

SHARES_TABLE = 'portfolio_shares'
SHARE_TYPE_LINK = 'link'
TOKEN_LENGTH = 21
TOKEN_ALPHABET = string.ascii_letters + string.digits + '_-'


class ShareScope(str, Enum):
    OVERVIEW = 'overview'
    FULL = 'full'
    FULL_WITH_HISTORY = 'full_with_history'

    @property
    def rank(self) -> int:
        return SCOPE_RANK[self]

    def satisfies(self, required: 'ShareScope') -> bool:
        return self.rank >= required.rank


SCOPE_RANK = {
    ShareScope.OVERVIEW: 0,
    ShareScope.FULL: 1,
    ShareScope.FULL_WITH_HISTORY: 2,
}


def generate_share_token() -> str:
    """21-character URL-safe random token."""
    return ''.join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


# Postgres trims trailing zeros from fractional seconds and may send a bare
# "+HH" offset; fromisoformat before 3.11 only takes 3 or 6 digits and "+HH:MM".
_FRACTION_RE = re.compile(r'\.(\d+)')
_SHORT_OFFSET_RE = re.compile(r'(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)([+-]\d{2})$')


def _normalize_timestamp(value: str) -> str:
    value = value.strip().replace('Z', '+00:00')
    value = _FRACTION_RE.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), value, count=1)
    return _SHORT_OFFSET_RE.sub(r'\1\2:00', value)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Postgres timestamptz string; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(_normalize_timestamp(str(value)))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Share:
    id: str
    owner_id: str
    scope: ShareScope
    token: Optional[str] = None
    viewer_id: Optional[str] = None
    label: Optional[str] = None
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if self.revoked_at is not None:
            return False
        if self.expires_at is not None and self.expires_at <= now:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'token': self.token,
            'scope': self.scope.value,
            'label': self.label,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'revoked_at': self.revoked_at.isoformat() if self.revoked_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Share':
        return cls(
            id=row['id'],
            owner_id=row.get('owner_id', ''),
            scope=ShareScope(row['scope']),
            token=row.get('token'),
            viewer_id=row.get('viewer_id'),
            label=row.get('label'),
            expires_at=parse_timestamp(row.get('expires_at')),
            revoked_at=parse_timestamp(row.get('revoked_at')),
            created_at=parse_timestamp(row.get('created_at')),
        )


class ShareService:
    """Validates share tokens and manages an owner's share links."""

    def __init__(self, supabase_client=None):
        self.supabase = supabase_client

    def _get_supabase_client(self):
        if self.supabase is None:
            from utils.supabase.db_client import get_supabase_client
            self.supabase = get_supabase_client()
        return self.supabase

    async def validate(self, token: str) -> Optional[Share]:
        """
        Look up a token.

        Returns:
            The Share if it exists and is neither revoked nor expired, else None.
            Storage errors also return None.
        """
        if not token:
            return None

        try:
            result = self._get_supabase_client().table(SHARES_TABLE)\
                .select('id, owner_id, viewer_id, scope, label, expires_at, revoked_at')\
                .eq('token', token)\
                .eq('share_type', SHARE_TYPE_LINK)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Error validating share token: {e}")
            return None

        if not result.data:
            return None

        try:
            share = Share.from_row(result.data[0])
        except (KeyError, ValueError) as e:
            logger.warning(f"Malformed share row: {e}")
            return None

        if not share.is_valid():
            return None
        return share

    async def require_scope(self, token: str, min_scope: ShareScope) -> Share:
        """
        Validate a token and check it grants at least `min_scope`.

        Raises:
            ShareNotFoundError: For unknown, revoked, expired or under-scoped tokens
        """
        share = await self.validate(token)
        if share is None or not share.scope.satisfies(ShareScope(min_scope)):
            raise ShareNotFoundError()
        return share

    async def create_share_link(self, owner_id: str, scope: ShareScope = ShareScope.FULL,
                                label: Optional[str] = None,
                                expires_in_days: Optional[int] = None) -> str:
        """
        Create a link share.

        Args:
            owner_id: Owner's user id
            scope: Capability granted to the token holder
            label: Optional display label
            expires_in_days: Days until expiry; None never expires

        Returns:
            The new token
        """
        token = generate_share_token()
        expires_at = None
        if expires_in_days is not None:
            expires_at = (datetime.now(timezone.utc) + timedelta(days=expires_in_days)).isoformat()

        self._get_supabase_client().table(SHARES_TABLE).insert({
            'owner_id': owner_id,
            'share_type': SHARE_TYPE_LINK,
            'token': token,
            'scope': ShareScope(scope).value,
            'label': (label or '').strip() or None,
            'expires_at': expires_at,
        }).execute()

        logger.info(f"🔗 Created {ShareScope(scope).value} share link for user {owner_id}")
        return token

    async def revoke_share(self, owner_id: str, share_id: str) -> bool:
        """Mark one of the owner's shares revoked. Returns False if no such share."""
        result = self._get_supabase_client().table(SHARES_TABLE)\
            .update({'revoked_at': datetime.now(timezone.utc).isoformat()})\
            .eq('id', share_id)\
            .eq('owner_id', owner_id)\
            .execute()

        revoked = bool(result.data)
        if revoked:
            logger.info(f"Revoked share {share_id} for user {owner_id}")
        return revoked

    async def list_shares(self, owner_id: str) -> List[Share]:
        """The owner's link shares, newest first (revoked and expired included)."""
        result = self._get_supabase_client().table(SHARES_TABLE)\
            .select('id, owner_id, token, scope, label, expires_at, revoked_at, created_at')\
            .eq('owner_id', owner_id)\
            .eq('share_type', SHARE_TYPE_LINK)\
            .order('created_at', desc=True)\
            .execute()
        return [Share.from_row(row) for row in result.data or []]


_share_service: Optional[ShareService] = None


def get_share_service() -> ShareService:
    """Get or create the global share service instance."""
    global _share_service

    if _share_service is None:
        _share_service = ShareService()

    return _share_service
