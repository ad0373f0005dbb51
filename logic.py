"""Domain rules that don't touch the database.

Kept free of SQLAlchemy sessions so the same rules can be checked directly in
tests and reused by ``crud`` when it builds queries.
"""
from typing import Any, Dict, Iterable, List, Mapping

import models


# --- Application status lifecycle ---
LEGAL_TRANSITIONS: Dict[str, frozenset] = {
    models.STATUS_PENDING: frozenset({models.STATUS_APPROVED, models.STATUS_REJECTED}),
    models.STATUS_APPROVED: frozenset(),
    models.STATUS_REJECTED: frozenset(),
}


class InvalidStatusTransition(ValueError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change application status from {current!r} to {requested!r}")


def ensure_status_transition(current: str, requested: str) -> None:
    """Raise InvalidStatusTransition unless current -> requested is allowed.

    Only pending -> approved and pending -> rejected are legal; both targets are
    terminal.
    """
    if requested not in LEGAL_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition(current, requested)


# --- Listing search ---
LIKE_ESCAPE = "\\"


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user text is matched literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def listing_matches(
    job: Any,
    q: str = "",
    category: str = "",
    job_type: str = "",
    location: str = "",
) -> bool:
    """Reference predicate for listing search.

    ``q`` (stripped) is a case-insensitive substring test against title, description or
    company name (any one suffices). Each facet is an exact match and an empty
    facet matches everything. ``crud.list_jobs`` expresses the same predicate in
    SQL.
    """
    q = (q or "").strip()
    if q:
        needle = q.lower()
        haystacks = (job.title, job.description, job.company_name)
        if not any(needle in (h or "").lower() for h in haystacks):
            return False
    if category and job.category != category:
        return False
    if job_type and job.job_type != job_type:
        return False
    if location and job.location != location:
        return False
    return True


# --- Inbox ---
def _recency_key(message: Any):
    # id breaks ties between messages stored with equal timestamps
    return (message.created_at, message.id)


def summarize_inbox(messages: Iterable[Any]) -> List[Any]:
    """Reduce messages addressed to one recipient to the latest per sender.

    Returns one message per distinct sender, newest first.
    """
    latest: Dict[str, Any] = {}
    for msg in messages:
        current = latest.get(msg.sender_id)
        if current is None or _recency_key(msg) > _recency_key(current):
            latest[msg.sender_id] = msg
    return sorted(latest.values(), key=_recency_key, reverse=True)


def display_name(identity_id: str, names: Mapping[str, str]) -> str:
    """Profile name for an identity, or the raw id when no profile resolves."""
    return names.get(identity_id) or identity_id
