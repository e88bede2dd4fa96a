import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from studypal.core.config import Config
from studypal.core.errors import ChatRequestError
from studypal.core.types import ChatMessage, Document, ProcessingState
from studypal.llm import prompts
from studypal.quiz.parser import QUIZ_OPEN_TAG, QuizOutcome, try_parse_quiz
from studypal.quiz.session import QuizSession

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Document, ChatMessage], None]


def message_text(content: Any) -> str:
    """Flatten langchain message content (a string or a list of parts) into plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces: List[str] = []
        for item in content:
            if isinstance(item, str):
                pieces.append(item)
            elif isinstance(item, dict) and item.get("type") == "text":
                pieces.append(str(item.get("text", "")))
        return "".join(pieces)
    return ""


def visible_reply(text: str) -> str:
    """What a partially streamed reply may show: never any part of a quiz block."""
    if QUIZ_OPEN_TAG in text:
        return prompts.QUIZ_CRAFTING_MESSAGE
    # hold back a trailing fragment that could be the start of the tag
    for size in range(len(QUIZ_OPEN_TAG) - 1, 0, -1):
        if text.endswith(QUIZ_OPEN_TAG[:size]):
            return text[:-size]
    return text


class ChatSession:
    """
    A persistent conversation with a fixed system persona.

    The history is committed only after a turn completes, so a failed request
    leaves the model-side history exactly as it was.
    """

    def __init__(self, llm: BaseChatModel, system_prompt: str, history: Optional[Sequence[BaseMessage]] = None):
        self.llm = llm
        self.system_message = SystemMessage(content=system_prompt)
        self.history: List[BaseMessage] = list(history or [])

    def _messages(self, text: str) -> List[BaseMessage]:
        return [self.system_message, *self.history, HumanMessage(content=text)]

    def _commit(self, text: str, reply: str) -> None:
        self.history.append(HumanMessage(content=text))
        self.history.append(AIMessage(content=reply))

    async def send(self, text: str) -> str:
        try:
            response = await self.llm.ainvoke(self._messages(text))
        except Exception as e:
            raise ChatRequestError(f"Chat request failed: {str(e)}") from e
        reply = message_text(response.content)
        self._commit(text, reply)
        return reply

    async def stream(self, text: str) -> AsyncIterator[str]:
        chunks: List[str] = []
        try:
            async for chunk in self.llm.astream(self._messages(text)):
                piece = message_text(chunk.content)
                if not piece:
                    continue
                chunks.append(piece)
                yield piece
        except Exception as e:
            raise ChatRequestError(f"Chat stream failed: {str(e)}") from e
        self._commit(text, "".join(chunks))


class ChatService:
    """
    Runs one user turn against a document's chat session and keeps the
    transcript and the current quiz in step with the reply.
    """

    def __init__(
        self,
        crafting_delay: Optional[float] = None,
        stream: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.crafting_delay = Config.QUIZ_CRAFTING_DELAY if crafting_delay is None else crafting_delay
        self.stream = Config.STREAM_RESPONSES if stream is None else stream
        self._sleep = sleep

    async def send_message(
        self,
        document: Document,
        text: str,
        stream: Optional[bool] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> Optional[ChatMessage]:
        """Returns the final bot message for this turn, or None when nothing was sent."""
        text = text.strip()
        if not text:
            return None
        if document.processing_state is not ProcessingState.DONE:
            logger.warning("[Chat] %s is not ready (%s), ignoring message", document.id, document.processing_state.value)
            return None

        use_stream = self.stream if stream is None else stream
        notify = on_update or (lambda doc, msg: None)

        # A new turn always retires the previous quiz
        document.quiz_session = None
        notify(document, document.append_message("user", text))

        reply_id = document.reserve_message_id()
        try:
            session = await self._session_for(document)
            if use_stream:
                reply = await self._stream_reply(document, session, text, reply_id, notify)
            else:
                reply = await session.send(text)
        except ChatRequestError as e:
            logger.error("[Chat] %s: %s", document.id, e)
            # Replaces any partially streamed reply, otherwise appends
            message = document.upsert_message(reply_id, "bot", prompts.CHAT_ERROR_MESSAGE)
            notify(document, message)
            return message

        return await self._finish_reply(document, reply, reply_id, notify)

    async def request_another_quiz(self, document: Document, on_update: Optional[UpdateCallback] = None) -> Optional[ChatMessage]:
        return await self.send_message(document, prompts.ANOTHER_QUIZ_REQUEST, on_update=on_update)

    async def _session_for(self, document: Document) -> ChatSession:
        if document.chat_session is None and document.chat_ready is not None:
            try:
                document.chat_session = await document.chat_ready
            except Exception as e:
                raise ChatRequestError(f"Chat session could not be created: {str(e)}") from e
        if document.chat_session is None:
            raise ChatRequestError("Chat session is not available for this document")
        return document.chat_session

    async def _stream_reply(
        self,
        document: Document,
        session: ChatSession,
        text: str,
        reply_id: int,
        notify: UpdateCallback,
    ) -> str:
        full_text = ""
        async for piece in session.stream(text):
            full_text += piece
            notify(document, document.upsert_message(reply_id, "bot", visible_reply(full_text)))
        return full_text

    async def _finish_reply(
        self,
        document: Document,
        reply: str,
        reply_id: int,
        notify: UpdateCallback,
    ) -> ChatMessage:
        result = try_parse_quiz(reply)

        if result.outcome is QuizOutcome.NONE:
            message = document.upsert_message(reply_id, "bot", reply)
            notify(document, message)
            return message

        if result.outcome is QuizOutcome.MALFORMED:
            logger.warning("[Quiz] Malformed quiz block in reply: %s", result.error)
            message = document.upsert_message(reply_id, "bot", prompts.QUIZ_FORMAT_ERROR_MESSAGE)
            notify(document, message)
            return message

        notify(document, document.upsert_message(reply_id, "bot", prompts.QUIZ_CRAFTING_MESSAGE))
        if self.crafting_delay > 0:
            await self._sleep(self.crafting_delay)

        document.quiz_session = QuizSession(result.quiz)
        logger.info("[Quiz] '%s' ready with %d questions", result.quiz.title, len(result.quiz.questions))
        message = document.upsert_message(reply_id, "bot", prompts.QUIZ_READY_MESSAGE)
        notify(document, message)
        return message
