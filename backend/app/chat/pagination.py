"""History pagination.

Clients rebuild a channel's history backwards, one page at a time:

    GET /api/channels/{id}/messages?limit=20
    GET /api/channels/{id}/messages?limit=20&before=<nextCursor of previous page>

The cursor is an exclusive upper bound on ``createdAt``. The store returns
the newest matching rows first; the page is reversed so clients can prepend
it as-is (oldest first). Because the store issues strictly increasing
timestamps, consecutive pages are disjoint and gap-free, and a decreasing
cursor sequence never returns the same message twice.

A page shorter than ``limit`` means there is nothing older. ``hasMore`` says
the same thing exactly: one extra row is requested to find out.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from app.errors import NotFoundError, PersistenceError, ValidationError
from app.store import DurableStore, IdentityRecord

from .schemas import MessageOut, enrich

logger = logging.getLogger(__name__)

# Default page size for message history pagination
DEFAULT_PAGE_SIZE = 20

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100


class Page(BaseModel):
    """One page of history, oldest message first."""
    messages: List[MessageOut]
    hasMore: bool
    nextCursor: Optional[datetime] = None


def clamp_limit(
    limit: Optional[int],
    default: int = DEFAULT_PAGE_SIZE,
    maximum: int = MAX_PAGE_SIZE,
) -> int:
    """Apply the default and the upper bound to a requested page size."""
    if limit is None:
        return min(default, maximum)
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    return min(limit, maximum)


def _lookup_sender(store: DurableStore, sender_id: str) -> Optional[IdentityRecord]:
    """Best-effort identity lookup; failures degrade the sender to its id."""
    try:
        return store.find_identity(sender_id)
    except Exception:
        logger.warning("[Pagination] Sender lookup failed for %s", sender_id, exc_info=True)
        return None


def fetch_page(
    store: DurableStore,
    channel_id: str,
    before: Optional[datetime] = None,
    limit: Optional[int] = None,
    *,
    default_limit: int = DEFAULT_PAGE_SIZE,
    max_limit: int = MAX_PAGE_SIZE,
) -> Page:
    """Fetch the newest ``limit`` messages strictly older than ``before``.

    Args:
        store: Durable store to read from.
        channel_id: Channel whose history to read.
        before: Cursor; None starts from the newest message.
        limit: Page size (defaults to ``default_limit``, capped at ``max_limit``).

    Returns:
        Page with messages in ascending creation order.
    """
    page_size = clamp_limit(limit, default_limit, max_limit)

    try:
        channel = store.find_channel_by_id(channel_id)
        if channel is None:
            raise NotFoundError("Channel not found")
        rows = store.find_messages_by_channel(channel_id, before=before, limit=page_size + 1)
    except NotFoundError:
        raise
    except Exception as e:
        logger.error("[Pagination] Failed to read history for %s: %s", channel_id, e, exc_info=True)
        raise PersistenceError("Failed to load messages") from e

    has_more = len(rows) > page_size
    rows = rows[:page_size]
    rows.reverse()

    senders: Dict[str, Optional[IdentityRecord]] = {}
    for row in rows:
        if row.sender_id not in senders:
            senders[row.sender_id] = _lookup_sender(store, row.sender_id)

    messages = [enrich(row, senders[row.sender_id]) for row in rows]
    return Page(
        messages=messages,
        hasMore=has_more,
        nextCursor=messages[0].createdAt if messages else None,
    )
