import asyncio
from typing import Any, AsyncIterator, List, Optional, Sequence

import fitz
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field, ValidationError

from studypal.core.errors import ChatRequestError, GenerationError
from studypal.core.types import FileReference
from studypal.llm.chat import message_text

SAMPLE_TEXT = (
    "Photosynthesis turns light energy into chemical energy in plants.\n"
    "Chlorophyll absorbs sunlight and the plant releases oxygen.\n"
    "The light-dependent reactions happen in the thylakoid membranes.\n"
    "The Calvin cycle then fixes carbon dioxide into glucose."
)

QUESTIONS_JSON = (
    '{"questions": ["🤔 What is **photosynthesis**?", "🌿 Why is **chlorophyll** green?", '
    '"💡 Where do the **light reactions** happen?", "🍬 What is **glucose** used for?", '
    '"✍️ Create a **quiz** on this document."]}'
)

QUIZ_REPLY = (
    '<quiz_data>{"title":"T","questions":[{"questionText":"Q","options":["a","b"],'
    '"correctAnswerIndex":1,"explanation":"E"}]}</quiz_data>'
)


def make_pdf(pages: Sequence[str]) -> bytes:
    """Build an in-memory PDF; an empty string gives a page with a drawing but no text."""
    pdf_doc = fitz.open()
    for text in pages:
        page = pdf_doc.new_page()
        if text:
            page.insert_textbox(fitz.Rect(72, 72, 520, 770), text, fontsize=11)
        else:
            page.draw_rect(fitz.Rect(100, 100, 300, 300), color=(0, 0, 0), fill=(0.5, 0.5, 0.5))
    data = pdf_doc.tobytes()
    pdf_doc.close()
    return data


def pdf_file(pages: Sequence[str], name: str = "notes.pdf") -> FileReference:
    return FileReference(name=name, mime_type="application/pdf", data=make_pdf(pages))


class PromptRoutingChatModel(BaseChatModel):
    """Answers summary, question and chat prompts differently, like the real model would."""

    summary: str = "## Summary\n\n* **Photosynthesis** turns light into glucose."
    questions: str = QUESTIONS_JSON
    chat_replies: List[str] = Field(default_factory=lambda: ["Chlorophyll absorbs light. ✨"])
    seen: List[Any] = Field(default_factory=list)

    @property
    def _llm_type(self) -> str:
        return "prompt-routing-fake"

    def _generate(self, messages: List[BaseMessage], stop=None, run_manager=None, **kwargs) -> ChatResult:
        self.seen.append(messages)
        prompt = message_text(messages[-1].content)
        if "generate 5 short" in prompt:
            reply = self.questions
        elif "comprehensive summary" in prompt:
            reply = self.summary
        else:
            reply = self.chat_replies.pop(0) if len(self.chat_replies) > 1 else self.chat_replies[0]
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content=reply))])


class FailingChatModel(BaseChatModel):
    @property
    def _llm_type(self) -> str:
        return "failing-fake"

    def _generate(self, messages: List[BaseMessage], stop=None, run_manager=None, **kwargs) -> ChatResult:
        raise ConnectionError("service unavailable")


class FakeChatSession:
    """Scripted stand-in for ChatSession."""

    def __init__(self, replies: Optional[List[str]] = None, fail: bool = False, fail_after: Optional[int] = None):
        self.replies = list(replies or ["Here is an answer."])
        self.fail = fail
        self.fail_after = fail_after  # chunks streamed before the connection drops
        self.sent: List[str] = []

    def _next_reply(self) -> str:
        return self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]

    async def send(self, text: str) -> str:
        self.sent.append(text)
        if self.fail:
            raise ChatRequestError("network down")
        return self._next_reply()

    async def stream(self, text: str) -> AsyncIterator[str]:
        self.sent.append(text)
        if self.fail:
            raise ChatRequestError("network down")
        reply = self._next_reply()
        for n, i in enumerate(range(0, len(reply), 8)):
            if self.fail_after is not None and n >= self.fail_after:
                raise ChatRequestError("connection dropped mid-stream")
            await asyncio.sleep(0)
            yield reply[i:i + 8]


class FakeLLMService:
    """Scripted stand-in for LLMService that records what it was asked."""

    def __init__(
        self,
        summary: str = "## Summary\n\nKey points.",
        questions: str = QUESTIONS_JSON,
        summary_error: Optional[Exception] = None,
        chat_session: Optional[FakeChatSession] = None,
    ):
        self.summary = summary
        self.questions = questions
        self.summary_error = summary_error
        self.chat_session = chat_session or FakeChatSession()
        self.text_calls: List[tuple] = []
        self.structured_calls: List[tuple] = []
        self.chat_calls: List[tuple] = []

    async def generate_text(self, prompt: str, parts=None) -> str:
        self.text_calls.append((prompt, parts))
        await asyncio.sleep(0)
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary

    async def generate_structured(self, prompt: str, schema, parts=None):
        self.structured_calls.append((prompt, parts))
        await asyncio.sleep(0)
        try:
            return schema.model_validate_json(self.questions)
        except ValidationError as e:
            raise GenerationError("bad structured output") from e

    async def create_chat(self, persona: str, seed_history):
        self.chat_calls.append((persona, list(seed_history)))
        return self.chat_session
