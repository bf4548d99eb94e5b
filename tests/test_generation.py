"""
Reply generation tests: prompt layout and the chat completions adapter.
"""
from types import SimpleNamespace

import pytest

from voice_pipeline.errors import GenerationError
from voice_pipeline.generation import ChatCompletionGenerator, build_messages
from voice_pipeline.retrieval import RetrievedSnippet
from voice_pipeline.session_store import Turn


class FakeCompletions:
    def __init__(self, content="Hello there!", error=None, choices=True):
        self.content = content
        self.error = error
        self.choices = choices
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        choices = [SimpleNamespace(message=SimpleNamespace(content=self.content))] if self.choices else []
        usage = SimpleNamespace(prompt_tokens=12, completion_tokens=4, total_tokens=16)
        return SimpleNamespace(choices=choices, model="meta-llama/test", usage=usage)


def fake_client(completions: FakeCompletions):
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions), closed=False)

    async def close():
        client.closed = True

    client.close = close
    return client


def test_build_messages_layout():
    history = [Turn("hi", "hello!"), Turn("how are you", "great")]
    context = [RetrievedSnippet(text="Likes rooibos.", score=0.8)]

    messages = build_messages("You are Tea.", history, "what should I drink?", context)

    assert messages == [
        {"role": "system", "content": "You are Tea."},
        {"role": "system", "content": "Relevant notes for this reply:\n- Likes rooibos."},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello!"},
        {"role": "user", "content": "how are you"},
        {"role": "assistant", "content": "great"},
        {"role": "user", "content": "what should I drink?"},
    ]


def test_build_messages_without_context_or_history():
    assert build_messages("P", (), "hey") == [
        {"role": "system", "content": "P"},
        {"role": "user", "content": "hey"},
    ]


@pytest.mark.asyncio
async def test_generate_returns_reply_and_usage():
    completions = FakeCompletions(content="  Hello there!  ")
    generator = ChatCompletionGenerator(fake_client(completions), model="meta-llama/test", max_tokens=80, temperature=0.2)

    result = await generator.generate([{"role": "user", "content": "hi"}])

    assert result.text == "Hello there!"
    assert result.model == "meta-llama/test"
    assert result.usage["total_tokens"] == 16
    request = completions.requests[0]
    assert request["model"] == "meta-llama/test"
    assert request["max_tokens"] == 80
    assert request["temperature"] == 0.2


@pytest.mark.asyncio
async def test_provider_failure():
    generator = ChatCompletionGenerator(fake_client(FakeCompletions(error=ConnectionError("reset"))), model="m")

    with pytest.raises(GenerationError) as exc_info:
        await generator.generate([{"role": "user", "content": "hi"}])

    assert exc_info.value.reason == "provider_error"


@pytest.mark.asyncio
@pytest.mark.parametrize("completions", [
    FakeCompletions(content="   "),
    FakeCompletions(content=None),
    FakeCompletions(choices=False),
])
async def test_empty_reply(completions):
    generator = ChatCompletionGenerator(fake_client(completions), model="m")

    with pytest.raises(GenerationError) as exc_info:
        await generator.generate([{"role": "user", "content": "hi"}])

    assert exc_info.value.reason == "empty_reply"


@pytest.mark.asyncio
async def test_aclose_closes_client():
    client = fake_client(FakeCompletions())
    await ChatCompletionGenerator(client, model="m").aclose()
    assert client.closed
