"""
Webhook routing tests
Simulates Evolution API webhook payloads against the handler
"""
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest

from visitor_pass.conversation import messages as m
from visitor_pass.conversation.webhook_handler import WebhookHandler, parse_inbound
from visitor_pass.conversation.wizard import WizardState
from visitor_pass.domain.models import PassStatus

RESIDENT_PHONE = "639171234567"
VISITOR_PHONE = "639189990000"


def create_webhook_payload(from_phone, message=None, button_id=None, row_id=None, message_id="MSG1", from_me=False):
    """Create a realistic Evolution API webhook payload"""
    if button_id:
        content = {"buttonsResponseMessage": {"selectedButtonId": button_id, "selectedDisplayText": button_id}}
    elif row_id:
        content = {"listResponseMessage": {"title": row_id, "singleSelectReply": {"selectedRowId": row_id}}}
    else:
        content = {"conversation": message}

    return {
        "event": "messages.upsert",
        "instance": "visitor-pass",
        "data": {
            "key": {
                "remoteJid": f"{from_phone}@s.whatsapp.net",
                "fromMe": from_me,
                "id": message_id
            },
            "pushName": "Test User",
            "message": content,
            "messageType": "conversation",
            "status": "RECEIVED"
        }
    }


@pytest.fixture
def directory(resident):
    directory = AsyncMock()

    async def get_by_phone(phone):
        return resident if phone == RESIDENT_PHONE else None

    directory.get_by_phone.side_effect = get_by_phone
    return directory


@pytest.fixture
def handler(store, transport, directory, clock):
    return WebhookHandler(store=store, transport=transport, directory=directory, clock=clock)


def last_text(transport):
    return transport.send_text.await_args.args[1]


def test_parse_text_button_and_list_replies():
    msg = parse_inbound(create_webhook_payload(VISITOR_PHONE, "vp3fa91c"))
    assert msg.sender == VISITOR_PHONE
    assert msg.text == "vp3fa91c"
    assert msg.option_id is None
    assert msg.message_id == "MSG1"

    msg = parse_inbound(create_webhook_payload(VISITOR_PHONE, button_id=m.EXIT))
    assert msg.option_id == m.EXIT

    msg = parse_inbound(create_webhook_payload(VISITOR_PHONE, row_id=m.FACILITY_INFO))
    assert msg.option_id == m.FACILITY_INFO


def test_parse_ignores_own_messages_and_other_events():
    assert parse_inbound(create_webhook_payload(VISITOR_PHONE, "hi", from_me=True)) is None
    assert parse_inbound({"event": "connection.update", "data": {}}) is None
    assert parse_inbound(create_webhook_payload(VISITOR_PHONE, "")) is None


async def test_visitor_checks_in_and_is_scoped(handler, transport, directory, make_pass):
    record = await make_pass()

    await handler.process_message(create_webhook_payload(VISITOR_PHONE, record.pass_code.lower()))

    transport.mark_as_read.assert_awaited_with("MSG1")
    assert "Welcome, Maria Santos" in last_text(transport)
    assert transport.send_choices.await_args.args[2] == m.VISITOR_MENU

    # a visitor-scoped sender never reaches resident actions or the directory
    await handler.process_message(create_webhook_payload(VISITOR_PHONE, button_id=m.CREATE_PASS, message_id="MSG2"))
    assert transport.send_choices.await_args.args[1].startswith("⛔")
    assert directory.get_by_phone.await_count == 1


async def test_used_single_use_pass_is_rejected(handler, transport, make_pass, store):
    record = await make_pass(single_use=True)

    await handler.process_message(create_webhook_payload(VISITOR_PHONE, record.pass_code))
    handler.visitors.end(VISITOR_PHONE)
    await handler.process_message(create_webhook_payload(VISITOR_PHONE, record.pass_code, message_id="MSG2"))

    assert "already been used" in last_text(transport)
    assert (await store.get_by_code(record.pass_code)).used_count == 1


async def test_each_rejection_has_its_own_message(handler, transport, make_pass, clock):
    await handler.process_message(create_webhook_payload(VISITOR_PHONE, "VP000000"))
    assert "Invalid pass code" in last_text(transport)

    later = await make_pass(valid_from=clock.now + timedelta(hours=4), valid_until=clock.now + timedelta(hours=6))
    await handler.process_message(create_webhook_payload(VISITOR_PHONE, later.pass_code))
    assert "not valid yet" in last_text(transport)
    assert "2026-10-20 02:00 PM" in last_text(transport)

    lapsing = await make_pass(valid_until=clock.now + timedelta(minutes=30))
    clock.advance(hours=1)
    await handler.process_message(create_webhook_payload(VISITOR_PHONE, lapsing.pass_code))
    assert "has expired" in last_text(transport)


async def test_revoked_pass_message(handler, transport, make_pass):
    record = await make_pass()
    await handler.oversight.revoke(record.pass_code, uuid4())

    await handler.process_message(create_webhook_payload(VISITOR_PHONE, record.pass_code))

    assert "revoked" in last_text(transport)
    assert handler.visitors.current(VISITOR_PHONE) is None


async def test_unregistered_sender_gets_instructions(handler, transport):
    await handler.process_message(create_webhook_payload(VISITOR_PHONE, "hello"))
    assert "pass code" in last_text(transport)


async def test_resident_gets_menu(handler, transport):
    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, "hi"))
    assert transport.send_choices.await_args.args[2] == m.RESIDENT_MENU


async def test_resident_creates_pass_through_webhook(handler, transport, resident, store):
    steps = [
        dict(button_id=m.CREATE_PASS),
        dict(message="Maria Santos"),
        dict(button_id=m.SKIP),
        dict(row_id="VISITOR_TYPE_GUEST"),
        dict(button_id=m.SKIP),
        dict(button_id=m.DATE_TOMORROW),
        dict(row_id="START_MORNING"),
        dict(row_id="DURATION_2"),
        dict(button_id=m.SINGLE_USE_NO),
        dict(button_id=m.CONFIRM_YES),
    ]
    for i, step in enumerate(steps):
        await handler.process_message(create_webhook_payload(RESIDENT_PHONE, message_id=f"MSG{i}", **step))

    passes = await store.list_for_resident(resident.id)
    assert len(passes) == 1
    assert passes[0].pass_code in last_text(transport)
    assert not handler.wizard.is_active(resident.id)


async def test_resident_lists_active_passes(handler, transport, make_pass):
    record = await make_pass()

    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, button_id=m.LIST_PASSES))

    listing = last_text(transport)
    assert record.pass_code in listing
    assert "Not used yet" in listing


async def test_resident_cancels_pass(handler, transport, make_pass, store):
    record = await make_pass()

    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, f"cancel {record.pass_code}"))

    assert "cancelled successfully" in last_text(transport)
    assert (await store.get_by_code(record.pass_code)).status == PassStatus.CANCELLED.value


async def test_active_wizard_takes_resident_input(handler, resident, clock):
    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, button_id=m.CREATE_PASS))
    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, "Maria Santos", message_id="MSG2"))

    session = handler.wizard.wizards.get(resident.id, clock.now)
    assert session.visitor_name == "Maria Santos"
    assert session.state == WizardState.COLLECT_VISITOR_NAME


async def test_directory_outage_is_reported(handler, transport, directory):
    directory.get_by_phone.side_effect = httpx.ConnectError("directory down")

    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, "hi"))

    assert "couldn't look up your account" in last_text(transport)


async def test_unexpected_failure_is_logged_and_reported(handler, transport, directory):
    directory.get_by_phone.side_effect = RuntimeError("boom")

    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, "hi"))

    assert "something went wrong" in last_text(transport)


async def test_check_in_still_works_during_directory_outage(handler, transport, directory, make_pass, store):
    record = await make_pass()
    directory.get_by_phone.side_effect = httpx.ConnectError("directory down")

    await handler.process_message(create_webhook_payload(VISITOR_PHONE, record.pass_code))

    assert "Welcome, Maria Santos" in last_text(transport)
    assert (await store.get_by_code(record.pass_code)).used_count == 1


async def test_abandoned_sessions_are_swept(handler, resident, make_pass, clock):
    record = await make_pass(valid_until=clock.now + timedelta(minutes=30))
    await handler.process_message(create_webhook_payload(VISITOR_PHONE, record.pass_code))
    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, button_id=m.CREATE_PASS, message_id="MSG2"))
    assert len(handler.visitors) == 1
    assert len(handler.wizard.wizards) == 1

    # neither sender writes again; any later message clears their leftovers
    clock.advance(hours=1)
    await handler.process_message(create_webhook_payload("639170000001", "hello", message_id="MSG3"))

    assert len(handler.visitors) == 0
    assert len(handler.wizard.wizards) == 0


async def test_cancel_explains_each_refusal(handler, transport, make_pass, clock):
    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, "cancel VP000000"))
    assert "don't have a visitor pass with code VP000000" in last_text(transport)

    used = await make_pass(single_use=True)
    await handler.engine.redeem(used.pass_code)
    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, f"cancel {used.pass_code}", message_id="MSG2"))
    assert "already been used" in last_text(transport)

    lapsing = await make_pass(valid_until=clock.now + timedelta(minutes=30))
    clock.advance(hours=1)
    await handler.process_message(create_webhook_payload(RESIDENT_PHONE, f"cancel {lapsing.pass_code}", message_id="MSG3"))
    assert "has expired" in last_text(transport)
