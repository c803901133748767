from datetime import timedelta

import pytest
from conftest import BASE_TIME, settle

from rentals.core.errors import InvalidInput, NoActiveConversation, NotAuthenticated
from rentals.models.domain.events import MessageInserted
from rentals.models.domain.messaging_domain import UNKNOWN_PARTICIPANT_NAME, Message
from rentals.services.conversation_coordinator import ConversationCoordinator


@pytest.fixture
def people(fake_backend):
    fake_backend.add_user("renter", role="renter", name="Rita")
    fake_backend.add_user("landlord", role="landlord", name="Lars")
    fake_backend.add_user("other", role="landlord", name="Olga")


@pytest.mark.asyncio
async def test_no_subscription_until_identity_known(fake_backend, coordinator):
    assert coordinator.mounted
    assert not coordinator.subscribed
    assert fake_backend.message_events.subscriber_count == 0
    assert coordinator.conversations == []


@pytest.mark.asyncio
async def test_sign_in_subscribes_and_lists_conversations(fake_backend, people, coordinator, sign_in):
    await fake_backend.create_conversation("renter", "landlord")

    await sign_in("renter")

    assert coordinator.subscribed
    assert fake_backend.message_events.subscriber_count == 1
    assert [c.other_participant_name for c in coordinator.conversations] == ["Lars"]
    assert coordinator.conversations[0].other_participant_id == "landlord"


@pytest.mark.asyncio
async def test_exactly_one_subscription_across_resign_in(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    await sign_in("landlord")
    await sign_in("renter")

    assert fake_backend.message_events.subscriber_count == 1


@pytest.mark.asyncio
async def test_logout_releases_subscription_and_clears_state(
    fake_backend, people, session, coordinator, sign_in
):
    conversation = await fake_backend.create_conversation("renter", "landlord")
    await sign_in("renter")
    await coordinator.select_conversation(coordinator.conversations[0])
    assert coordinator.selected_conversation.id == conversation.id

    await session.logout()
    await settle()

    assert not coordinator.subscribed
    assert fake_backend.message_events.subscriber_count == 0
    assert coordinator.conversations == []
    assert coordinator.selected_conversation is None
    assert coordinator.messages == []


@pytest.mark.asyncio
async def test_unmount_releases_subscription(fake_backend, people, session, sign_in):
    coordinator = ConversationCoordinator(fake_backend, session)
    await sign_in("renter")

    async with coordinator:
        assert fake_backend.message_events.subscriber_count == 1

    assert fake_backend.message_events.subscriber_count == 0
    assert not coordinator.mounted


@pytest.mark.asyncio
async def test_unknown_participant_name(fake_backend, people, coordinator, sign_in):
    await fake_backend.create_conversation("renter", "deleted-user")

    await sign_in("renter")

    assert coordinator.conversations[0].other_participant_name == UNKNOWN_PARTICIPANT_NAME


@pytest.mark.asyncio
async def test_start_conversation_is_symmetric(fake_backend, people, session, coordinator, sign_in):
    await sign_in("renter")
    first = await coordinator.start_conversation("landlord")

    await sign_in("landlord")
    second = await coordinator.start_conversation("renter")

    assert first.ok and second.ok
    assert first.data.id == second.data.id
    assert len(fake_backend.conversations) == 1
    assert fake_backend.remote_calls("create_conversation") == 1


@pytest.mark.asyncio
async def test_start_conversation_refreshes_list(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")

    result = await coordinator.start_conversation("landlord")

    assert [c.id for c in coordinator.conversations] == [result.data.id]
    assert result.data.other_participant_name == "Lars"


@pytest.mark.asyncio
async def test_start_conversation_with_self_is_rejected(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    calls_before = len(fake_backend.calls)

    result = await coordinator.start_conversation("renter")

    assert isinstance(result.error, InvalidInput)
    assert len(fake_backend.calls) == calls_before


@pytest.mark.asyncio
async def test_start_conversation_requires_identity(coordinator):
    result = await coordinator.start_conversation("landlord")

    assert isinstance(result.error, NotAuthenticated)


@pytest.mark.asyncio
async def test_send_without_selection_fails(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")

    result = await coordinator.send_message("hi")

    assert isinstance(result.error, NoActiveConversation)
    assert fake_backend.remote_calls("insert_message") == 0
    assert fake_backend.messages == []


@pytest.mark.asyncio
async def test_send_rejects_blank_content(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    started = await coordinator.start_conversation("landlord")

    result = await coordinator.send_message("   \n", conversation_id=started.data.id)

    assert isinstance(result.error, InvalidInput)
    assert fake_backend.remote_calls("insert_message") == 0


@pytest.mark.asyncio
async def test_send_with_explicit_conversation_skips_selection(
    fake_backend, people, coordinator, sign_in
):
    await sign_in("renter")
    started = await coordinator.start_conversation("landlord")
    assert coordinator.selected_conversation is None

    result = await coordinator.send_message("  Is it still available?  ", conversation_id=started.data.id)

    assert result.ok
    assert result.data == started.data.id
    assert fake_backend.messages[-1].content == "Is it still available?"
    assert fake_backend.messages[-1].sender_id == "renter"


@pytest.mark.asyncio
async def test_sent_message_arrives_through_feed(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    started = await coordinator.start_conversation("landlord")
    await coordinator.select_conversation(started.data)

    result = await coordinator.send_message("hello")
    assert result.ok
    # Not appended optimistically
    assert coordinator.messages == []

    await settle()

    assert [m.content for m in coordinator.messages] == ["hello"]
    assert coordinator.conversations[0].last_message_content == "hello"


@pytest.mark.asyncio
async def test_feed_ignores_other_conversations_but_refreshes_list(
    fake_backend, people, coordinator, sign_in
):
    await sign_in("renter")
    with_lars = (await coordinator.start_conversation("landlord")).data
    with_olga = (await coordinator.start_conversation("other")).data
    await coordinator.select_conversation(with_lars)
    refreshes_before = fake_backend.remote_calls("list_conversations")

    await fake_backend.insert_message(with_olga.id, "other", "new offer")
    await settle()

    assert coordinator.messages == []
    assert fake_backend.remote_calls("list_conversations") == refreshes_before + 1
    assert coordinator.conversations[0].id == with_olga.id


@pytest.mark.asyncio
async def test_duplicate_delivery_is_not_appended_twice(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    conversation = (await coordinator.start_conversation("landlord")).data
    await coordinator.select_conversation(conversation)
    message = fake_backend.store_message(conversation.id, "landlord", "hi")

    await coordinator.handle_message_inserted(MessageInserted(message=message))
    await coordinator.handle_message_inserted(MessageInserted(message=message))

    assert [m.id for m in coordinator.messages] == [message.id]


@pytest.mark.asyncio
async def test_history_is_ordered_by_timestamp(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    conversation = (await coordinator.start_conversation("landlord")).data
    t1, t2, t3 = (BASE_TIME + timedelta(minutes=n) for n in (1, 2, 3))

    # Inserted out of order
    fake_backend.store_message(conversation.id, "landlord", "third", created_at=t3)
    fake_backend.store_message(conversation.id, "renter", "first", created_at=t1)
    fake_backend.store_message(conversation.id, "landlord", "second", created_at=t2)

    result = await coordinator.select_conversation(conversation)

    assert [m.content for m in result.data] == ["first", "second", "third"]
    assert [m.content for m in coordinator.messages] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_history_ties_broken_by_id(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    conversation = (await coordinator.start_conversation("landlord")).data
    same_time = BASE_TIME + timedelta(minutes=5)
    a = fake_backend.store_message(conversation.id, "renter", "a", created_at=same_time)
    b = fake_backend.store_message(conversation.id, "renter", "b", created_at=same_time)

    async def unordered(conversation_id):
        return [b, a]

    fake_backend.list_messages = unordered

    await coordinator.select_conversation(conversation)

    assert [m.id for m in coordinator.messages] == [a.id, b.id]


@pytest.mark.asyncio
async def test_reselecting_refetches(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    conversation = (await coordinator.start_conversation("landlord")).data

    await coordinator.select_conversation(conversation)
    await coordinator.select_conversation(conversation)

    assert fake_backend.remote_calls("list_messages") == 2


@pytest.mark.asyncio
async def test_select_failure_clears_history(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    conversation = (await coordinator.start_conversation("landlord")).data
    fake_backend.store_message(conversation.id, "landlord", "hi")
    await coordinator.select_conversation(conversation)
    fake_backend.fail("list_messages", message="timeout")

    result = await coordinator.select_conversation(conversation)

    assert result.error.message == "timeout"
    assert coordinator.messages == []
    assert coordinator.loading_messages is False


@pytest.mark.asyncio
async def test_duplicate_pair_rows_collapse_to_oldest(fake_backend, people, coordinator, sign_in):
    first = await fake_backend.create_conversation("renter", "landlord")
    await fake_backend.create_conversation("landlord", "renter")

    await sign_in("renter")

    assert [c.id for c in coordinator.conversations] == [first.id]


@pytest.mark.asyncio
async def test_conversations_sorted_by_last_activity(fake_backend, people, coordinator, sign_in):
    older = await fake_backend.create_conversation("renter", "landlord")
    newer = await fake_backend.create_conversation("renter", "other")
    fake_backend.store_message(older.id, "landlord", "bump")

    await sign_in("renter")

    assert [c.id for c in coordinator.conversations] == [older.id, newer.id]


@pytest.mark.asyncio
async def test_contact_landlord_sends_first_message_and_selects(
    fake_backend, people, coordinator, sign_in
):
    await sign_in("renter")

    result = await coordinator.contact_landlord("landlord", "Hi, is the flat free in June?")
    await settle()

    assert result.ok
    assert coordinator.selected_conversation.id == result.data.id
    assert [m.content for m in coordinator.messages] == ["Hi, is the flat free in June?"]
    stored = [m for m in fake_backend.messages if m.conversation_id == result.data.id]
    assert len(stored) == 1


@pytest.mark.asyncio
async def test_contact_landlord_reports_send_failure(fake_backend, people, coordinator, sign_in):
    await sign_in("renter")
    fake_backend.fail("insert_message", message="new row violates row-level security policy")

    result = await coordinator.contact_landlord("landlord", "hello")

    assert not result.ok
    assert result.error.message == "new row violates row-level security policy"


@pytest.mark.asyncio
async def test_refresh_failure_keeps_previous_list(fake_backend, people, coordinator, sign_in):
    await fake_backend.create_conversation("renter", "landlord")
    await sign_in("renter")
    fake_backend.fail("list_conversations")

    result = await coordinator.refresh_conversations()

    assert not result.ok
    assert len(coordinator.conversations) == 1
    assert coordinator.loading_conversations is False


def test_message_sort_key_orders_by_time_then_id():
    late = Message(id=1, conversation_id=1, sender_id="a", content="x", created_at=BASE_TIME + timedelta(seconds=1))
    early_high_id = Message(id=3, conversation_id=1, sender_id="a", content="y", created_at=BASE_TIME)
    early_low_id = Message(id=2, conversation_id=1, sender_id="a", content="z", created_at=BASE_TIME)

    ordered = sorted([late, early_high_id, early_low_id], key=Message.sort_key)

    assert [m.id for m in ordered] == [2, 3, 1]
