from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

import logic
import models

T0 = datetime(2026, 1, 1, 12, 0, 0)


def _job(**fields):
    base = dict(
        title="Backend Engineer",
        description="APIs and databases",
        company_name="Acme",
        category="technology",
        job_type="full_time",
        location="Lagos",
    )
    base.update(fields)
    return SimpleNamespace(**base)


def _msg(msg_id, sender_id, minutes, content=None):
    return SimpleNamespace(
        id=msg_id,
        sender_id=sender_id,
        recipient_id="me",
        content=content or f"msg {msg_id}",
        created_at=T0 + timedelta(minutes=minutes),
    )


# --- Status transitions ---
@pytest.mark.parametrize("target", [models.STATUS_APPROVED, models.STATUS_REJECTED])
def test_pending_can_be_decided(target):
    logic.ensure_status_transition(models.STATUS_PENDING, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (models.STATUS_APPROVED, models.STATUS_PENDING),
        (models.STATUS_REJECTED, models.STATUS_PENDING),
        (models.STATUS_APPROVED, models.STATUS_REJECTED),
        (models.STATUS_REJECTED, models.STATUS_APPROVED),
        (models.STATUS_PENDING, models.STATUS_PENDING),
        (models.STATUS_APPROVED, models.STATUS_APPROVED),
    ],
)
def test_decided_status_is_terminal(current, target):
    with pytest.raises(logic.InvalidStatusTransition) as exc_info:
        logic.ensure_status_transition(current, target)
    assert exc_info.value.current == current
    assert exc_info.value.requested == target


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        logic.ensure_status_transition("withdrawn", models.STATUS_APPROVED)


# --- Listing predicate ---
def test_free_text_matches_any_of_title_description_company():
    assert logic.listing_matches(_job(), q="ENGINEER")
    assert logic.listing_matches(_job(), q="databases")
    assert logic.listing_matches(_job(), q="acm")
    assert not logic.listing_matches(_job(), q="designer")


def test_facets_are_exact_and_empty_means_any():
    job = _job()
    assert logic.listing_matches(job, category="technology", job_type="", location="")
    assert not logic.listing_matches(job, category="Technology")
    assert not logic.listing_matches(job, location="Lago")
    assert logic.listing_matches(job, q="engineer", category="technology", job_type="full_time", location="Lagos")
    assert not logic.listing_matches(job, q="engineer", category="finance")


def test_escape_like_neutralises_wildcards():
    assert logic.escape_like("100%") == "100\\%"
    assert logic.escape_like("c_sharp") == "c\\_sharp"
    assert logic.escape_like("a\\b") == "a\\\\b"
    assert logic.escape_like("plain") == "plain"


# --- Inbox ---
def test_summarize_inbox_keeps_latest_per_sender():
    messages = [
        _msg(1, "alice", 1),
        _msg(2, "bob", 5),
        _msg(3, "alice", 10, content="newest from alice"),
        _msg(4, "alice", 3),
        _msg(5, "carol", 7),
    ]

    summary = logic.summarize_inbox(messages)

    assert [m.sender_id for m in summary] == ["alice", "carol", "bob"]
    assert summary[0].content == "newest from alice"
    assert len({m.sender_id for m in summary}) == len(summary)


def test_summarize_inbox_breaks_timestamp_ties_by_id():
    summary = logic.summarize_inbox([_msg(7, "alice", 2), _msg(9, "alice", 2), _msg(8, "alice", 2)])
    assert [m.id for m in summary] == [9]


def test_summarize_inbox_empty():
    assert logic.summarize_inbox([]) == []


def test_display_name_falls_back_to_identity_id():
    names = {"alice": "Alice A."}
    assert logic.display_name("alice", names) == "Alice A."
    assert logic.display_name("user_2xyz", names) == "user_2xyz"
