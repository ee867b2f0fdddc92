"""
Completion Client - streams chat completions from an OpenAI-compatible API
using LangChain.

A fixed system directive is injected in front of the history, giving the
model the copper alloy expert persona and telling it to decline questions
outside that domain. This is a second safety layer next to the keyword gate.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from loguru import logger

from app.core.config import Settings
from app.core.exceptions import UpstreamError

SYSTEM_PROMPT = """You are an expert in copper and copper alloy materials. You are skilled at:

- Classifying copper alloy grades and designations
- Analysing chemical composition
- Comparing mechanical properties
- Explaining heat treatment processes
- Recommending applications
- Relating composition to properties

Answer requirements:
1. Use precise technical terminology
2. Structure the answer clearly
3. Give concrete figures whenever possible
4. Avoid vague generalities
5. If a question falls outside copper and copper alloys, explain that this system only supports copper and copper alloy topics
"""

SYSTEM_PROMPT_ZH = """你是一名铜及铜合金材料领域的专家，擅长：

- 铜合金牌号分类
- 化学成分分析
- 力学性能对比
- 热处理工艺解释
- 应用场景推荐
- 成分与性能关系分析

回答要求：
1. 使用专业术语
2. 回答结构清晰
3. 尽量给出具体数据
4. 避免泛泛而谈
5. 如果问题超出铜及铜合金领域，请说明本系统仅支持铜及铜合金相关问题
"""

SYSTEM_PROMPTS = {"en": SYSTEM_PROMPT, "zh": SYSTEM_PROMPT_ZH}

ChunkCallback = Callable[[str], None]


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call generation options."""
    temperature: float = 0.7
    max_tokens: int = 2000
    model: str = "qwen-plus"


class CompletionClient:
    """
    Adapter to the external streaming completion API.

    Holds no per-call state; one instance is shared by every exchange.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        default_options: Optional[CompletionOptions] = None,
        system_prompt: str = SYSTEM_PROMPT,
        timeout: float = 120.0
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.default_options = default_options or CompletionOptions()
        self.system_prompt = system_prompt
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionClient":
        """The directive follows RESPONSE_LANGUAGE unless LLM_SYSTEM_PROMPT overrides it."""
        return cls(
            api_key=settings.LLM_API_KEY,
            base_url=settings.LLM_BASE_URL,
            default_options=CompletionOptions(
                temperature=settings.LLM_TEMPERATURE,
                max_tokens=settings.LLM_MAX_TOKENS,
                model=settings.LLM_MODEL,
            ),
            system_prompt=settings.LLM_SYSTEM_PROMPT or SYSTEM_PROMPTS[settings.RESPONSE_LANGUAGE],
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )

    def _create_model(self, options: CompletionOptions) -> BaseChatModel:
        """
        Build the LangChain chat model for one call.

        Retries are disabled: a failure aborts the exchange and is reported
        to the caller.
        """
        return ChatOpenAI(
            model=options.model,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def _build_messages(self, history: Sequence[Dict[str, str]]) -> List[BaseMessage]:
        """
        Convert role/content dicts to LangChain messages, prepending the
        system directive unless the caller supplied a system message.
        """
        messages: List[BaseMessage] = []
        for entry in history:
            role = entry.get("role")
            content = entry.get("content", "")
            if role == "system":
                messages.append(SystemMessage(content=content))
            elif role == "assistant":
                messages.append(AIMessage(content=content))
            else:
                messages.append(HumanMessage(content=content))

        if not any(isinstance(message, SystemMessage) for message in messages):
            messages.insert(0, SystemMessage(content=self.system_prompt))
        return messages

    @staticmethod
    def _extract_text_content(content: Any) -> str:
        """
        Extract text content from a chunk's content which might be a string or list.
        """
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            text_parts = []
            for block in content:
                if isinstance(block, dict) and block.get("type") == "text":
                    text_parts.append(block.get("text", ""))
                elif isinstance(block, str):
                    text_parts.append(block)
            return "".join(text_parts)
        return str(content) if content else ""

    async def stream_completion(
        self,
        history: Sequence[Dict[str, str]],
        on_chunk: ChunkCallback,
        options: Optional[CompletionOptions] = None
    ) -> str:
        """
        Stream a completion, forwarding every non-empty fragment to on_chunk.

        Args:
            history: Ordered role/content dicts, oldest first
            on_chunk: Called synchronously with each text fragment
            options: Temperature, max tokens and model; defaults apply when omitted

        Returns:
            The fully assembled response text

        Raises:
            UpstreamError: On any failure reported by the completion service
        """
        options = options or self.default_options
        messages = self._build_messages(history)

        parts: List[str] = []
        try:
            llm = self._create_model(options)
            async for chunk in llm.astream(messages):
                text = self._extract_text_content(chunk.content)
                if not text:
                    continue
                parts.append(text)
                on_chunk(text)
        except UpstreamError:
            raise
        except Exception as e:
            logger.error(f"Completion stream failed after {len(parts)} chunks: {e!r}")
            raise UpstreamError("completion service error") from e

        return "".join(parts)
