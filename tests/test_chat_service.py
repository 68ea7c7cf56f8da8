"""Tests for the chat session engine."""

import pytest

from kb_assistant.config import BotSettings, ChatSettings
from kb_assistant.models.chat import HistoryMessage, MessageRole
from kb_assistant.services.chat_service import ChatService
from kb_assistant.utils.errors import NotFoundError, ValidationError

from conftest import seed_chunks

CALLER = "key_caller_one"
OTHER_CALLER = "key_caller_two"


async def collect(events):
    return [event async for event in events]


@pytest.fixture
def chat(services):
    return services.chat


@pytest.fixture
async def session_id(chat):
    session = await chat.get_or_create_session(None, CALLER)
    return session.id


def history(*contents):
    roles = [MessageRole.USER, MessageRole.ASSISTANT]
    return [HistoryMessage(role=roles[i % 2], content=c) for i, c in enumerate(contents)]


class TestSessions:
    """Session resolution and ownership."""

    @pytest.mark.asyncio
    async def test_resume_own_session(self, chat, session_id):
        resumed = await chat.get_or_create_session(session_id, CALLER)
        assert resumed.id == session_id

    @pytest.mark.asyncio
    async def test_foreign_session_id_starts_new_session(self, chat, session_id):
        other = await chat.get_or_create_session(session_id, OTHER_CALLER)
        assert other.id != session_id
        assert other.api_key_id == OTHER_CALLER

    @pytest.mark.asyncio
    async def test_unknown_session_id_starts_new_session(self, chat):
        session = await chat.get_or_create_session("ses_does_not_exist", CALLER)
        assert session.id != "ses_does_not_exist"

    @pytest.mark.asyncio
    async def test_history_hidden_from_other_callers(self, chat, session_id):
        with pytest.raises(NotFoundError):
            await chat.get_history(session_id, OTHER_CALLER)

    @pytest.mark.asyncio
    async def test_delete_session(self, chat, session_id):
        assert await chat.delete_session(session_id, OTHER_CALLER) is False
        assert await chat.delete_session(session_id, CALLER) is True
        with pytest.raises(NotFoundError):
            await chat.get_history(session_id, CALLER)


class TestMessageHandling:
    def make_chat(self, **chat_settings):
        return ChatService(
            session_factory=None,
            retriever=None,
            llm=None,
            bot_config=BotSettings().to_config(),
            chat_settings=ChatSettings(**chat_settings),
        )

    def test_tags_are_stripped(self):
        chat = self.make_chat()
        assert chat.sanitize_message("<b>Hello</b> <script>x</script>there") == "Hello xthere"

    def test_message_is_truncated(self):
        chat = self.make_chat(max_message_length=10)
        assert chat.sanitize_message("a" * 50) == "a" * 10

    def test_validate_message(self):
        chat = self.make_chat()
        assert chat.validate_message("<p>Hi</p>") == "Hi"
        with pytest.raises(ValidationError):
            chat.validate_message("<p> </p>")

    def test_window_keeps_most_recent_messages(self):
        chat = self.make_chat(max_history_messages=3, history_token_budget=100)
        window = chat.window_history(history("one", "two", "three", "four"))
        assert [m.content for m in window] == ["two", "three", "four"]

    def test_window_respects_token_budget(self):
        # token estimates: 1, 2, 2, 1
        chat = self.make_chat(max_history_messages=10, history_token_budget=4)
        window = chat.window_history(history("aaaa", "bbbbbbbb", "cccccccc", "dddd"))
        assert [m.content for m in window] == ["cccccccc", "dddd"]

    def test_window_stops_at_first_message_over_budget(self):
        chat = self.make_chat(max_history_messages=10, history_token_budget=3)
        window = chat.window_history(history("a", "b" * 40, "c"))
        assert [m.content for m in window] == ["c"]

    def test_zero_history_limit(self):
        chat = self.make_chat(max_history_messages=0)
        assert chat.window_history(history("a", "b")) == []


class TestStreaming:
    """Streamed turns and what gets persisted."""

    @pytest.mark.asyncio
    async def test_turn_streams_and_persists_both_messages(self, chat, session_id, completion):
        events = await collect(chat.stream_turn(session_id, "What is the refund policy?"))

        assert [e.type for e in events] == ["start", "token", "token", "token", "done"]
        assert events[0].session_id == session_id
        answer = "".join(e.content for e in events if e.type == "token")
        assert answer == "Refunds are accepted within 30 days."

        result = await chat.get_history(session_id, CALLER)
        assert [(m.role, m.content) for m in result.messages] == [
            (MessageRole.USER, "What is the refund policy?"),
            (MessageRole.ASSISTANT, answer),
        ]
        assert events[-1].message_id == result.messages[-1].id

    @pytest.mark.asyncio
    async def test_completion_receives_model_settings(self, chat, session_id, completion):
        await collect(chat.stream_turn(session_id, "Hello"))

        params = completion.calls[0]
        assert params["stream"] is True
        assert params["model"] == chat.bot_config.model
        assert params["max_tokens"] == chat.bot_config.max_tokens
        assert params["messages"][-1] == {"role": "user", "content": "Hello"}

    @pytest.mark.asyncio
    async def test_history_is_sent_on_the_next_turn(self, chat, session_id, completion):
        await collect(chat.stream_turn(session_id, "First question"))
        await collect(chat.stream_turn(session_id, "Second question"))

        roles = [m["role"] for m in completion.calls[1]["messages"]]
        assert roles == ["system", "user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_retrieved_context_is_cited_in_system_prompt(
        self, chat, session_id, completion, session_factory
    ):
        await seed_chunks(session_factory, [("chk_refund", "Our refund policy: refunds within 30 days.", 10)])

        await collect(chat.stream_turn(session_id, "What is your refund policy?"))

        system = completion.calls[0]["messages"][0]
        assert system["role"] == "system"
        assert "[Source:faq.md]" in system["content"]
        assert "refunds within 30 days" in system["content"]

    @pytest.mark.asyncio
    async def test_retrieval_failure_degrades_to_no_context(
        self, chat, session_id, completion, embedding_client, session_factory
    ):
        await seed_chunks(session_factory, [("chk_refund", "Our refund policy: refunds within 30 days.", 10)])
        embedding_client.fail_times = 100

        events = await collect(chat.stream_turn(session_id, "What is your refund policy?"))

        assert events[-1].type == "done"
        assert completion.calls[0]["messages"][0]["content"] == chat.bot_config.system_prompt

    @pytest.mark.asyncio
    async def test_failing_query_embedding_is_tried_once(
        self, services, chat, session_id, completion, embedding_client, session_factory
    ):
        await seed_chunks(session_factory, [("chk_refund", "Our refund policy: refunds within 30 days.", 10)])
        services.embedding.max_retries = 3
        embedding_client.fail_times = 1

        events = await collect(chat.stream_turn(session_id, "What is your refund policy?"))

        assert len(embedding_client.calls) == 1
        assert [e.type for e in events][0] == "start"
        assert events[-1].type == "done"
        assert completion.calls[0]["messages"][0]["content"] == chat.bot_config.system_prompt

    @pytest.mark.asyncio
    async def test_completion_failure_emits_error_event(self, chat, session_id, completion):
        completion.fail_on_call = True

        events = await collect(chat.stream_turn(session_id, "Hello"))

        assert [e.type for e in events] == ["start", "error"]
        assert events[-1].code == "llm_error"
        result = await chat.get_history(session_id, CALLER)
        assert [m.role for m in result.messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_mid_stream_failure_keeps_no_partial_answer(self, chat, session_id, completion):
        completion.fail_after = 1

        events = await collect(chat.stream_turn(session_id, "Hello"))

        assert [e.type for e in events] == ["start", "token", "error"]
        result = await chat.get_history(session_id, CALLER)
        assert [m.role for m in result.messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_client_disconnect_persists_nothing_more(self, chat, session_id, completion):
        checks = []

        async def is_disconnected():
            checks.append(True)
            return len(checks) > 1

        events = await collect(chat.stream_turn(session_id, "Hello", is_disconnected))

        assert [e.type for e in events] == ["start", "token"]
        assert completion.streams[0].closed
        result = await chat.get_history(session_id, CALLER)
        assert [m.role for m in result.messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_closing_the_stream_early_persists_nothing_more(self, chat, session_id):
        events = chat.stream_turn(session_id, "Hello")
        first = await events.__anext__()
        await events.aclose()

        assert first.type == "start"
        result = await chat.get_history(session_id, CALLER)
        assert [m.role for m in result.messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_markup_only_message_is_rejected(self, chat, session_id):
        with pytest.raises(ValidationError):
            await collect(chat.stream_turn(session_id, "<p></p>"))
