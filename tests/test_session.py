"""
Chat Session Tests
==================
Optimistic display, reconciliation, promotion, rollback and cancellation.
"""

import asyncio

import pytest

from blinkchat.errors import CompletionError, InputError, NotFoundError, PersistenceError
from blinkchat.models import Conversation, Message, Role
from blinkchat.session import SessionState

from .conftest import settle


def _view(session) -> list[tuple[str, str]]:
    return [(m.id, m.content) for m in session.messages]


class TestSendMessage:
    """Happy-path exchanges in persisted and ephemeral sessions."""

    @pytest.mark.asyncio
    async def test_new_conversation_then_send_persists_user_then_assistant(
        self, make_session, gateway
    ) -> None:
        session = await make_session()
        conversation = await session.new_conversation()

        result = await session.send_message("x")

        persisted = await gateway.list_messages(conversation.id)
        assert [m.role for m in persisted] == [Role.USER, Role.ASSISTANT]
        assert persisted[0].created_at < persisted[1].created_at
        assert [m.id for m in persisted] == [result.user_message.id, result.assistant_message.id]
        assert result.promoted is False

    @pytest.mark.asyncio
    async def test_user_message_is_shown_before_completion_returns(
        self, make_session, completion
    ) -> None:
        session = await make_session()
        await session.new_conversation()
        completion.gate = asyncio.Event()

        task = asyncio.create_task(session.send_message("Hello there"))
        await settle()

        assert [m.content for m in session.messages] == ["Hello there"]
        assert session.state is SessionState.SENDING

        completion.gate.set()
        await task

    @pytest.mark.asyncio
    async def test_input_is_stripped(self, make_session, gateway) -> None:
        session = await make_session()
        conversation = await session.new_conversation()

        await session.send_message("   padded   ")

        persisted = await gateway.list_messages(conversation.id)
        assert persisted[0].content == "padded"

    @pytest.mark.asyncio
    async def test_persona_context_is_passed_to_completion(self, make_session, completion) -> None:
        session = await make_session()
        await session.new_conversation()

        await session.send_message("hi")

        user_input, persona = completion.calls[0]
        assert user_input == "hi"
        assert "Alice" in persona
        assert "Answer like a pirate." in persona

    @pytest.mark.asyncio
    async def test_last_updated_bumped_after_exchange(self, make_session, store) -> None:
        session = await make_session()
        conversation = await session.new_conversation()

        await session.send_message("bump")

        after = await store.get(conversation.id)
        assert after.last_updated > conversation.last_updated

    @pytest.mark.asyncio
    async def test_messages_changed_notified_with_conversation_id(self, make_session) -> None:
        session = await make_session()
        conversation = await session.new_conversation()
        keys: list[str] = []
        session.messages_changed.add_listener(keys.append)

        await session.send_message("notify me")

        assert keys
        assert set(keys) == {conversation.id}


class TestInputValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_empty_input_rejected_without_side_effects(
        self, make_session, completion, text: str
    ) -> None:
        session = await make_session()

        with pytest.raises(InputError):
            await session.send_message(text)

        assert session.messages == []
        assert completion.calls == []
        assert session.is_ephemeral


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_second_send_while_pending_is_noop(self, make_session, completion, gateway) -> None:
        session = await make_session()
        conversation = await session.new_conversation()
        completion.gate = asyncio.Event()

        first = asyncio.create_task(session.send_message("first"))
        await settle()
        second = await session.send_message("second")

        assert second is None
        assert len(completion.calls) == 1
        assert [m.content for m in session.messages] == ["first"]

        completion.gate.set()
        result = await first
        assert result is not None
        assert session.state is SessionState.IDLE
        persisted = await gateway.list_messages(conversation.id)
        assert [m.content for m in persisted] == ["first", completion.reply]


class TestRollback:
    @pytest.mark.asyncio
    async def test_completion_failure_restores_displayed_sequence(
        self, make_session, completion
    ) -> None:
        session = await make_session()
        await session.new_conversation()
        await session.send_message("earlier turn")
        await settle()
        before = _view(session)

        completion.error = RuntimeError("model offline")
        with pytest.raises(CompletionError):
            await session.send_message("this one fails")
        await settle()

        assert _view(session) == before
        assert session.state is SessionState.IDLE
        assert isinstance(session.last_error, CompletionError)

    @pytest.mark.asyncio
    async def test_completion_failure_in_ephemeral_session_creates_nothing(
        self, make_session, completion, store, alice
    ) -> None:
        session = await make_session()
        completion.error = CompletionError("model offline")

        with pytest.raises(CompletionError):
            await session.send_message("hello?")

        assert session.messages == []
        assert session.is_ephemeral
        assert await store.list(alice.uid) == []

    @pytest.mark.asyncio
    async def test_second_write_failure_removes_both_optimistic_messages(
        self, make_session, gateway
    ) -> None:
        session = await make_session()
        conversation = await session.new_conversation()
        real_add = gateway.add_message
        writes: list[Message] = []

        async def flaky_add(message: Message) -> Message:
            writes.append(message)
            if message.role is Role.ASSISTANT:
                raise PersistenceError("disk full")
            return await real_add(message)

        gateway.add_message = flaky_add

        with pytest.raises(PersistenceError):
            await session.send_message("will half-commit")
        await settle()

        user_write, assistant_write = writes
        shown = {m.id for m in session.messages}
        assert assistant_write.id not in shown
        # The user write already succeeded; it is durable and stays visible.
        persisted = await gateway.list_messages(conversation.id)
        assert [m.id for m in persisted] == [user_write.id]
        assert shown == {user_write.id}
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_first_write_failure_leaves_sequence_unchanged(
        self, make_session, gateway
    ) -> None:
        session = await make_session()
        conversation = await session.new_conversation()

        async def broken_add(message: Message) -> Message:
            raise PersistenceError("store unavailable")

        gateway.add_message = broken_add

        with pytest.raises(PersistenceError) as info:
            await session.send_message("nothing lands")
        await settle()

        assert session.messages == []
        assert info.value.conversation_id == conversation.id


class TestReconciliation:
    @pytest.mark.asyncio
    async def test_pushed_copies_replace_optimistic_entries_without_duplicates(
        self, make_session
    ) -> None:
        session = await make_session()
        await session.new_conversation()

        result = await session.send_message("ping")
        await settle()

        assert [m.id for m in session.messages] == [
            result.user_message.id,
            result.assistant_message.id,
        ]

    @pytest.mark.asyncio
    async def test_identical_texts_are_not_merged(self, make_session, completion) -> None:
        session = await make_session()
        await session.new_conversation()
        completion.reply = "same"

        await session.send_message("same")
        await session.send_message("same")
        await settle()

        assert [m.content for m in session.messages] == ["same"] * 4
        assert len({m.id for m in session.messages}) == 4

    @pytest.mark.asyncio
    async def test_push_arriving_mid_exchange_is_merged(
        self, make_session, completion, gateway, bob
    ) -> None:
        session = await make_session()
        conversation = await session.new_conversation()
        completion.gate = asyncio.Event()

        task = asyncio.create_task(session.send_message("mine"))
        await settle()
        other = Message(
            id="other-device",
            conversation_id=conversation.id,
            role=Role.USER,
            content="from another device",
            created_at=gateway.now(),
        )
        await gateway.add_message(other)
        await settle()

        contents = [m.content for m in session.messages]
        assert "mine" in contents
        assert "from another device" in contents

        completion.gate.set()
        await task
        await settle()
        assert sorted(m.content for m in session.messages) == sorted(
            ["mine", "from another device", completion.reply]
        )

    @pytest.mark.asyncio
    async def test_second_consumer_sees_exchange_through_push(self, make_session, bob) -> None:
        writer = await make_session()
        conversation = await writer.new_conversation()
        reader = await make_session(conversation.id, user=bob)

        await writer.send_message("broadcast")
        await settle()

        assert [m.content for m in reader.messages][0] == "broadcast"
        assert len(reader.messages) == 2


class TestPromotion:
    @pytest.mark.asyncio
    async def test_ephemeral_first_exchange_promotes_and_titles(
        self, make_session, store, gateway, alice
    ) -> None:
        session = await make_session()
        assert session.is_ephemeral

        result = await session.send_message("Explain recursion in one sentence.")

        assert result.promoted is True
        assert session.conversation_id == result.conversation_id
        created = await store.get(result.conversation_id)
        assert created.title == "New Chat"
        assert created.owner_id == alice.uid

        await session.drain()
        await settle()

        titled = await store.get(result.conversation_id)
        assert titled.title == "Understanding Recursion Basics Today"
        assert len(titled.title.split()) <= 4
        assert '"' not in titled.title and "'" not in titled.title
        persisted = await gateway.list_messages(result.conversation_id)
        assert [(m.role, m.content) for m in persisted] == [
            (Role.USER, "Explain recursion in one sentence."),
            (Role.ASSISTANT, result.assistant_message.content),
        ]
        assert [m.id for m in session.messages] == [m.id for m in persisted]

    @pytest.mark.asyncio
    async def test_promotion_happens_once(self, make_session, summarizer, store, alice) -> None:
        session = await make_session()

        first = await session.send_message("one")
        second = await session.send_message("two")
        await session.drain()

        assert first.promoted is True
        assert second.promoted is False
        assert second.conversation_id == first.conversation_id
        assert len(await store.list(alice.uid)) == 1
        assert summarizer.calls == ["one"]

    @pytest.mark.asyncio
    async def test_summarization_failure_keeps_default_title(
        self, make_session, summarizer, store
    ) -> None:
        session = await make_session()
        summarizer.error = RuntimeError("summarizer down")

        result = await session.send_message("hello")
        await session.drain()

        assert (await store.get(result.conversation_id)).title == "New Chat"

    @pytest.mark.asyncio
    async def test_promotion_failure_rolls_back_and_stays_ephemeral(
        self, make_session, gateway
    ) -> None:
        session = await make_session()

        async def refuse(conversation):
            raise PersistenceError("quota exceeded")

        gateway.create_conversation = refuse

        with pytest.raises(PersistenceError):
            await session.send_message("try to save me")

        assert session.is_ephemeral
        assert session.messages == []


class TestReplyAndDraft:
    @pytest.mark.asyncio
    async def test_reply_target_is_attached_then_cleared(self, make_session) -> None:
        session = await make_session()
        await session.new_conversation()
        first = await session.send_message("question")
        await settle()

        session.set_reply_target(first.assistant_message.id)
        second = await session.send_message("follow-up")
        await settle()

        assert second.user_message.reply_to == first.assistant_message.id
        assert session.reply_target is None
        shown = next(m for m in session.messages if m.id == second.user_message.id)
        assert session.resolve_reply(shown).id == first.assistant_message.id

    @pytest.mark.asyncio
    async def test_dangling_reply_resolves_to_none(self, make_session) -> None:
        session = await make_session()
        await session.new_conversation()

        result = await session.send_message("orphan", reply_to_id="does-not-exist")
        await settle()

        shown = next(m for m in session.messages if m.id == result.user_message.id)
        assert shown.reply_to == "does-not-exist"
        assert session.resolve_reply(shown) is None

    @pytest.mark.asyncio
    async def test_new_ephemeral_session_discards_draft(self, make_session) -> None:
        session = await make_session()
        session.set_draft("half-typed thought")

        await session.switch_to(None)

        assert session.draft == ""


class TestCancellation:
    @pytest.mark.asyncio
    async def test_switching_away_discards_late_reply(
        self, make_session, completion, gateway
    ) -> None:
        session = await make_session()
        first = await session.new_conversation()
        completion.gate = asyncio.Event()

        task = asyncio.create_task(session.send_message("abandon me"))
        await settle()
        await session.switch_to(None)
        completion.gate.set()
        result = await task

        assert result.abandoned is True
        assert await gateway.list_messages(first.id) == []
        assert session.messages == []
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_switching_conversations_replaces_subscription(
        self, make_session, store, alice
    ) -> None:
        session = await make_session()
        await session.new_conversation()
        await session.send_message("in a")
        b = await store.create(alice.uid)

        await session.switch_to(b.id)
        await settle()

        assert session.conversation_id == b.id
        assert session.messages == []


class TestReactions:
    @pytest.mark.asyncio
    async def test_toggle_twice_restores_reactions(self, make_session, gateway, alice) -> None:
        session = await make_session()
        conversation = await session.new_conversation()
        result = await session.send_message("react to me")
        await settle()
        target = result.assistant_message.id

        assert await session.toggle_reaction(target, "like") is True
        await settle()
        shown = next(m for m in session.messages if m.id == target)
        assert shown.reactions == {"like": {alice.uid}}

        assert await session.toggle_reaction(target, "like") is False
        await settle()
        persisted = {m.id: m for m in await gateway.list_messages(conversation.id)}
        assert persisted[target].reactions == {}

    @pytest.mark.asyncio
    async def test_toggle_in_ephemeral_session_is_noop(self, make_session) -> None:
        session = await make_session()
        assert await session.toggle_reaction("anything", "like") is None

    @pytest.mark.asyncio
    async def test_toggle_on_unconfirmed_message_is_rejected(
        self, make_session, completion
    ) -> None:
        session = await make_session()
        await session.new_conversation()
        completion.gate = asyncio.Event()
        task = asyncio.create_task(session.send_message("pending"))
        await settle()
        pending_id = session.messages[0].id

        with pytest.raises(InputError):
            await session.toggle_reaction(pending_id, "like")

        completion.gate.set()
        await task

    @pytest.mark.asyncio
    async def test_toggle_unknown_message_raises_not_found(self, make_session) -> None:
        session = await make_session()
        await session.new_conversation()

        with pytest.raises(NotFoundError):
            await session.toggle_reaction("missing", "like")

    @pytest.mark.asyncio
    async def test_failed_toggle_reverts_local_overlay(self, make_session, gateway) -> None:
        session = await make_session()
        await session.new_conversation()
        result = await session.send_message("fragile")
        await settle()

        async def broken_toggle(*args):
            raise PersistenceError("write rejected")

        gateway.toggle_reaction = broken_toggle
        target = result.user_message.id

        with pytest.raises(PersistenceError):
            await session.toggle_reaction(target, "heart")

        shown = next(m for m in session.messages if m.id == target)
        assert shown.reactions == {}

    @pytest.mark.asyncio
    async def test_toggle_right_after_switching_to_existing_conversation(
        self, make_session, gateway, alice
    ) -> None:
        conversation = await gateway.create_conversation(
            Conversation(id="c-1", title="Old chat", owner_id=alice.uid, last_updated=gateway.now())
        )
        await gateway.add_message(
            Message(
                id="m-1", conversation_id=conversation.id, role=Role.ASSISTANT,
                content="earlier reply", created_at=gateway.now(),
            )
        )

        session = await make_session(conversation.id)

        assert [m.id for m in session.messages] == ["m-1"]
        assert await session.toggle_reaction("m-1", "like") is True

    @pytest.mark.asyncio
    async def test_failed_toggle_keeps_snapshot_pushed_meanwhile(
        self, make_session, gateway, bob
    ) -> None:
        session = await make_session()
        await session.new_conversation()
        result = await session.send_message("contested")
        await settle()
        target = result.user_message.id
        real_toggle = gateway.toggle_reaction

        async def toggle_then_fail(conversation_id, message_id, kind, user_id):
            await real_toggle(conversation_id, message_id, kind, bob.uid)
            await settle()
            raise PersistenceError("write rejected", conversation_id=conversation_id)

        gateway.toggle_reaction = toggle_then_fail

        with pytest.raises(PersistenceError):
            await session.toggle_reaction(target, "like")

        shown = next(m for m in session.messages if m.id == target)
        assert shown.reactions == {"like": {bob.uid}}


class TestLifecycleDelegates:
    @pytest.mark.asyncio
    async def test_deleting_active_conversation_returns_to_ephemeral(
        self, make_session, gateway
    ) -> None:
        session = await make_session()
        conversation = await session.new_conversation()
        await session.send_message("soon gone")

        await session.delete_conversation(conversation.id)

        assert session.is_ephemeral
        assert session.messages == []
        assert await gateway.get_conversation(conversation.id) is None

    @pytest.mark.asyncio
    async def test_delete_all_and_restore_all(self, make_session, store, alice) -> None:
        session = await make_session()
        keep = await store.create(alice.uid)
        await session.set_archived(keep.id, True)

        restored = await session.restore_all_conversations()
        assert restored.processed == [keep.id]

        await session.new_conversation()
        deleted = await session.delete_all_conversations()
        assert deleted.ok
        assert len(deleted.processed) == 2
        assert session.is_ephemeral
