import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from app.core.config import Settings
from app.core.exceptions import UpstreamError
from app.services.completion_client import SYSTEM_PROMPT, SYSTEM_PROMPT_ZH, CompletionClient, CompletionOptions


class Chunk:
    def __init__(self, content):
        self.content = content


class FakeModel:
    def __init__(self, contents, error=None):
        self.contents = contents
        self.error = error
        self.received = None

    async def astream(self, messages):
        self.received = messages
        for content in self.contents:
            yield Chunk(content)
        if self.error is not None:
            raise self.error


def patch_model(monkeypatch, client, model):
    options_seen = []

    def create_model(options):
        options_seen.append(options)
        return model

    monkeypatch.setattr(client, "_create_model", create_model)
    return options_seen


async def test_stream_forwards_chunks_and_returns_full_text(monkeypatch):
    client = CompletionClient(api_key="k")
    model = FakeModel(["Cu", "", "Zn", [{"type": "text", "text": " alloy"}]])
    patch_model(monkeypatch, client, model)
    received = []

    result = await client.stream_completion([{"role": "user", "content": "brass?"}], received.append)

    assert received == ["Cu", "Zn", " alloy"]
    assert result == "CuZn alloy"


async def test_system_directive_is_prepended(monkeypatch):
    client = CompletionClient(api_key="k")
    model = FakeModel(["ok"])
    patch_model(monkeypatch, client, model)

    history = [
        {"role": "user", "content": "What is C11000?"},
        {"role": "assistant", "content": "ETP copper."},
        {"role": "user", "content": "Its conductivity?"},
    ]
    await client.stream_completion(history, lambda text: None)

    assert isinstance(model.received[0], SystemMessage)
    assert model.received[0].content == SYSTEM_PROMPT
    assert [type(m) for m in model.received[1:]] == [HumanMessage, AIMessage, HumanMessage]


async def test_caller_system_message_is_kept(monkeypatch):
    client = CompletionClient(api_key="k")
    model = FakeModel(["ok"])
    patch_model(monkeypatch, client, model)

    history = [{"role": "system", "content": "custom"}, {"role": "user", "content": "copper"}]
    await client.stream_completion(history, lambda text: None)

    system_messages = [m for m in model.received if isinstance(m, SystemMessage)]
    assert [m.content for m in system_messages] == ["custom"]


async def test_options_default_and_override(monkeypatch):
    defaults = CompletionOptions(temperature=0.2, max_tokens=50, model="qwen-turbo")
    client = CompletionClient(api_key="k", default_options=defaults)
    options_seen = patch_model(monkeypatch, client, FakeModel(["ok"]))

    await client.stream_completion([{"role": "user", "content": "copper"}], lambda text: None)
    override = CompletionOptions(temperature=0.9)
    await client.stream_completion([{"role": "user", "content": "copper"}], lambda text: None, override)

    assert options_seen == [defaults, override]


async def test_transport_failure_becomes_upstream_error(monkeypatch):
    client = CompletionClient(api_key="k")
    patch_model(monkeypatch, client, FakeModel(["partial"], error=ConnectionError("reset")))
    received = []

    with pytest.raises(UpstreamError) as exc_info:
        await client.stream_completion([{"role": "user", "content": "copper"}], received.append)

    assert exc_info.value.message == "completion service error"
    assert exc_info.value.status_code == 502
    assert received == ["partial"]


def test_from_settings_copies_generation_options():
    settings = Settings(
        LLM_API_KEY="secret",
        LLM_BASE_URL="http://llm.local/v1",
        LLM_MODEL="qwen-max",
        LLM_TEMPERATURE=0.1,
        LLM_MAX_TOKENS=321,
        LLM_TIMEOUT_SECONDS=5,
    )
    client = CompletionClient.from_settings(settings)

    assert client.api_key == "secret"
    assert client.base_url == "http://llm.local/v1"
    assert client.timeout == 5
    assert client.default_options == CompletionOptions(temperature=0.1, max_tokens=321, model="qwen-max")


def test_model_is_configured_without_retries():
    client = CompletionClient(api_key="k", base_url="http://llm.local/v1", timeout=7)
    model = client._create_model(CompletionOptions(temperature=0.3, max_tokens=99, model="qwen-plus"))

    assert model.model_name == "qwen-plus"
    assert model.temperature == 0.3
    assert model.max_tokens == 99
    assert model.max_retries == 0


def test_system_directive_follows_response_language():
    assert CompletionClient.from_settings(Settings()).system_prompt == SYSTEM_PROMPT

    chinese = CompletionClient.from_settings(Settings(RESPONSE_LANGUAGE="zh"))
    assert chinese.system_prompt == SYSTEM_PROMPT_ZH
    assert "铜及铜合金" in chinese.system_prompt

    custom = CompletionClient.from_settings(
        Settings(RESPONSE_LANGUAGE="zh", LLM_SYSTEM_PROMPT="Answer only about bronze.")
    )
    assert custom.system_prompt == "Answer only about bronze."
