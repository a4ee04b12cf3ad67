"""
Unit tests for support tickets

Tests unread flags, closing rules, ownership and the one-time welcome
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from backend.messages import (
    STATUS_CLOSED,
    STATUS_OPEN,
    WELCOME_SUBJECT,
    SupportTickets,
    TicketClosed,
    TicketNotFound,
)


@pytest.fixture
def tickets(tmp_path):
    return SupportTickets(str(tmp_path))


def test_member_ticket_unread_for_staff(tickets):
    ticket_id = tickets.create_ticket("42", "Cover letter question", "Which consulate do I use?")
    ticket = tickets.get_ticket(ticket_id, "42")

    assert ticket["status"] == STATUS_OPEN
    assert ticket["has_unread_staff"]
    assert not ticket["has_unread_user"]
    assert ticket["replies"][0]["content"] == "Which consulate do I use?"
    assert tickets.unread_count(staff=True) == 1
    assert tickets.unread_count("42") == 0


def test_empty_subject_rejected(tickets):
    with pytest.raises(ValueError):
        tickets.create_ticket("42", "  ", "Hello")
    with pytest.raises(ValueError):
        tickets.create_ticket("42", "Hello", "")


def test_ticket_needs_member(tickets):
    with pytest.raises(ValueError):
        tickets.create_staff_ticket(None, "Update", "Your guide is ready")
    with pytest.raises(ValueError):
        tickets.create_staff_ticket("  ", "Update", "Your guide is ready")
    assert tickets.list_tickets() == []


def test_numeric_member_id_stored_as_text(tickets):
    ticket_id = tickets.create_staff_ticket(42, "Update", "Your guide is ready")
    assert tickets.get_ticket(ticket_id, "42")["user_id"] == "42"


def test_reply_flips_unread_flags(tickets):
    """Test each reply marks the ticket unread for the other side"""
    ticket_id = tickets.create_ticket("42", "Question", "Hello")

    tickets.add_reply(ticket_id, "staff-1", "Hi! Use the Los Angeles consulate.", is_staff=True)
    ticket = tickets.get_ticket(ticket_id)
    assert ticket["has_unread_user"]
    assert not ticket["has_unread_staff"]
    assert tickets.unread_count("42") == 1

    tickets.add_reply(ticket_id, "42", "Thanks!")
    ticket = tickets.get_ticket(ticket_id)
    assert not ticket["has_unread_user"]
    assert ticket["has_unread_staff"]
    assert len(ticket["replies"]) == 3


def test_mark_read(tickets):
    ticket_id = tickets.create_staff_ticket("42", "Update", "Your guide is ready")
    assert tickets.unread_count("42") == 1

    tickets.mark_read(ticket_id, user_id="42")
    assert tickets.unread_count("42") == 0


def test_member_cannot_reply_to_closed(tickets):
    ticket_id = tickets.create_ticket("42", "Question", "Hello")
    tickets.set_status(ticket_id, STATUS_CLOSED)

    with pytest.raises(TicketClosed):
        tickets.add_reply(ticket_id, "42", "One more thing")


def test_staff_reply_reopens(tickets):
    ticket_id = tickets.create_ticket("42", "Question", "Hello")
    tickets.set_status(ticket_id, STATUS_CLOSED)

    tickets.add_reply(ticket_id, "staff-1", "Following up", is_staff=True)

    assert tickets.get_ticket(ticket_id)["status"] == STATUS_OPEN


def test_closed_tickets_not_counted_for_staff(tickets):
    ticket_id = tickets.create_ticket("42", "Question", "Hello")
    tickets.set_status(ticket_id, STATUS_CLOSED)

    assert tickets.unread_count(staff=True) == 0


def test_invalid_status(tickets):
    ticket_id = tickets.create_ticket("42", "Question", "Hello")

    with pytest.raises(ValueError):
        tickets.set_status(ticket_id, "pending")
    with pytest.raises(TicketNotFound):
        tickets.set_status("nope", STATUS_CLOSED)


def test_members_only_see_their_own(tickets):
    ticket_id = tickets.create_ticket("42", "Mine", "Hello")
    tickets.create_ticket("43", "Theirs", "Hello")

    assert [t["subject"] for t in tickets.list_tickets("42")] == ["Mine"]
    assert len(tickets.list_tickets()) == 2
    with pytest.raises(TicketNotFound):
        tickets.get_ticket(ticket_id, "43")
    with pytest.raises(TicketNotFound):
        tickets.add_reply(ticket_id, "43", "Hijack")
    with pytest.raises(TicketNotFound):
        tickets.delete_ticket(ticket_id, "43")


def test_staff_list_unread_first(tickets):
    first = tickets.create_ticket("42", "Older", "Hello")
    second = tickets.create_ticket("43", "Newer", "Hello")
    tickets.mark_read(second, by_staff=True)

    subjects = [t["subject"] for t in tickets.list_tickets()]
    assert subjects == ["Older", "Newer"]
    assert tickets.list_tickets()[0]["id"] == first
    assert tickets.list_tickets()[0]["reply_count"] == 1


def test_list_filtered_by_status(tickets):
    open_id = tickets.create_ticket("42", "Open", "Hello")
    closed_id = tickets.create_ticket("42", "Closed", "Hello")
    tickets.set_status(closed_id, STATUS_CLOSED)

    assert [t["id"] for t in tickets.list_tickets("42", STATUS_OPEN)] == [open_id]
    assert [t["id"] for t in tickets.list_tickets("42", STATUS_CLOSED)] == [closed_id]


def test_welcome_sent_once(tickets):
    ticket_id = tickets.send_welcome("42", "Jane")

    assert ticket_id is not None
    ticket = tickets.get_ticket(ticket_id, "42")
    assert ticket["subject"] == WELCOME_SUBJECT
    assert ticket["replies"][0]["content"].startswith("Welcome to Relo2France, Jane!")
    assert ticket["has_unread_user"]

    assert tickets.send_welcome("42", "Jane") is None
    assert len(tickets.list_tickets("42")) == 1


def test_delete(tickets):
    ticket_id = tickets.create_ticket("42", "Question", "Hello")
    tickets.delete_ticket(ticket_id, "42")

    with pytest.raises(TicketNotFound):
        tickets.get_ticket(ticket_id)


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING SUPPORT TICKETS")
    print("="*60 + "\n")

    sys.exit(pytest.main([__file__, "-v"]))
