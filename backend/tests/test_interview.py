import asyncio

import pytest

from voice_practice.interview import NO_RESPONSE_MESSAGE, AIInterviewController, build_system_prompt
from voice_practice.llm import ChatCompletionError
from voice_practice.main import handle_interview_message
from voice_practice.speech import SpeechRelay


class FakeChat:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def __call__(self, api_key, messages):
        self.calls.append((api_key, list(messages)))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def make(output, speech_input, scheduler):
    def factory(chat, api_key="gsk-test", topic="System design", **kwargs):
        return AIInterviewController(
            output, speech_input, scheduler, api_key=api_key, topic=topic, chat=chat, **kwargs
        )

    return factory


async def _settle(controller):
    if controller.tasks:
        await asyncio.gather(*list(controller.tasks))


def test_system_prompt_mentions_topic_and_instructions():
    prompt = build_system_prompt("Databases", "focus on indexing")
    assert prompt["role"] == "system"
    assert "Topic: Databases" in prompt["content"]
    assert "Candidate instructions: focus on indexing" in prompt["content"]
    assert "Ask ONE question only" in prompt["content"]


@pytest.mark.parametrize(
    "kwargs, message",
    [({"api_key": None}, "API key missing"), ({"topic": ""}, "Topic not ready")],
)
def test_start_requires_key_and_topic(make, kwargs, message):
    chat = FakeChat()
    controller = make(chat, **kwargs)
    asyncio.run(controller.start())
    assert controller.state.error == message
    assert not controller.state.running
    assert chat.calls == []


def test_first_question_is_spoken_then_listened_for(make, output, speech_input):
    chat = FakeChat("Tell me about sharding.")
    controller = make(chat, instructions="be tough")
    asyncio.run(controller.start())

    api_key, messages = chat.calls[0]
    assert api_key == "gsk-test"
    assert messages == [build_system_prompt("System design", "be tough")]
    assert output.last == "Tell me about sharding."
    assert controller.messages == [{"role": "assistant", "content": "Tell me about sharding."}]

    output.finish()
    capture = speech_input.latest
    assert (capture.locale, capture.interim_results, capture.continuous) == ("en-US", False, False)
    capture.emit_start()
    assert controller.state.status == "Listening..."
    assert controller.state.listening


def test_answer_is_sent_with_context_and_reply_spoken(make, output, speech_input, scheduler):
    chat = FakeChat("First question?", "Follow-up?")
    controller = make(chat)

    async def scenario():
        await controller.start()
        output.finish()
        capture = speech_input.latest
        capture.emit_start()
        timer = scheduler.pending[0]
        capture.emit_result("I would use consistent hashing")
        assert timer.cancelled
        assert controller.state.status == "Processing..."
        await _settle(controller)

    asyncio.run(scenario())

    _, context = chat.calls[1]
    assert context[0]["role"] == "system"
    assert context[1:] == [
        {"role": "assistant", "content": "First question?"},
        {"role": "user", "content": "I would use consistent hashing"},
    ]
    assert output.last == "Follow-up?"
    output.finish()
    assert len(speech_input.captures) == 2


def test_context_keeps_system_prompt_and_last_ten_messages(make):
    controller = make(FakeChat())
    controller.system_prompt = build_system_prompt("x")
    controller.messages = [{"role": "user", "content": str(i)} for i in range(15)]

    context = controller.context()

    assert len(context) == 11
    assert context[0] == controller.system_prompt
    assert context[1]["content"] == "5"


def test_silence_ends_the_interview(make, output, speech_input, scheduler):
    controller = make(FakeChat("Question?"))
    asyncio.run(controller.start())
    output.finish()
    capture = speech_input.latest
    capture.emit_start()

    timer = scheduler.fire_next()

    assert timer.delay == 6.0
    assert capture.stopped
    assert output.last == NO_RESPONSE_MESSAGE
    assert controller.state.running

    output.finish()

    assert not controller.state.running
    assert controller.state.status == "Interview ended"


def test_failed_first_question_reports_error(make, output):
    controller = make(FakeChat(ChatCompletionError("boom")))
    asyncio.run(controller.start())
    assert controller.state.error == "Failed generating question"
    assert output.spoken == []


def test_failed_reply_reports_error(make, output, speech_input):
    chat = FakeChat("Question?", ChatCompletionError("rate limited"))
    controller = make(chat)

    async def scenario():
        await controller.start()
        output.finish()
        speech_input.latest.emit_start()
        speech_input.latest.emit_result("answer")
        await _settle(controller)

    asyncio.run(scenario())
    assert controller.state.error == "AI request failed"
    assert output.last == "Question?"


def test_reply_after_stop_is_dropped(make, output, speech_input):
    chat = FakeChat("Question?", "Late reply")
    controller = make(chat)

    async def scenario():
        await controller.start()
        output.finish()
        speech_input.latest.emit_start()
        speech_input.latest.emit_result("answer")
        controller.stop()
        await _settle(controller)

    asyncio.run(scenario())
    assert "Late reply" not in output.spoken
    assert controller.state.status == "Interview ended"


def test_capture_end_clears_timer_and_listening(make, output, speech_input, scheduler):
    controller = make(FakeChat("Question?"))
    asyncio.run(controller.start())
    output.finish()
    capture = speech_input.latest
    capture.emit_start()
    capture.emit_end()

    assert not controller.state.listening
    assert scheduler.pending == []


def test_close_is_safe_when_idle(make):
    controller = make(FakeChat())
    asyncio.run(controller.close())
    assert not controller.state.running


def test_capture_error_cancels_the_silence_timer(scheduler):
    sent = []
    relay = SpeechRelay(sent.append)
    controller = AIInterviewController(
        relay.output, relay.input, scheduler, api_key="gsk-test", topic="System design", chat=FakeChat("Question?")
    )
    asyncio.run(controller.start())
    relay.dispatch({"type": "speech_ended", "utterance_id": "u1"})
    assert sent[-1]["type"] == "listen_start"
    capture_id = sent[-1]["capture_id"]

    relay.dispatch({"type": "capture_started", "capture_id": capture_id})
    assert len(scheduler.pending) == 1
    relay.dispatch({"type": "capture_error", "capture_id": capture_id, "error": "network"})
    relay.dispatch({"type": "capture_ended", "capture_id": capture_id})

    assert scheduler.pending == []
    assert not controller.state.listening
    assert controller.state.running
    assert [m["text"] for m in sent if m["type"] == "speak"] == ["Question?"]


def test_context_before_start_still_leads_with_system_prompt(make):
    controller = make(FakeChat(), instructions="be brief")
    assert controller.context() == [build_system_prompt("System design", "be brief")]


def test_second_start_frame_is_ignored_while_running(make):
    controller = make(FakeChat())
    controller.state.running = True
    controller.messages = [{"role": "assistant", "content": "Question?"}]
    relay = SpeechRelay(lambda message: None)
    outbox = asyncio.Queue()

    handle_interview_message(controller, relay, {"type": "start_interview", "apiKey": "other"}, outbox)

    assert controller.tasks == set()
    assert controller.api_key == "gsk-test"
    assert controller.messages == [{"role": "assistant", "content": "Question?"}]
    assert outbox.empty()
