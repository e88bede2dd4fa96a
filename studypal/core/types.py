import mimetypes
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, PrivateAttr, model_validator

from studypal.core.errors import ExtractionError


class ModelInfo(BaseModel):
    """An entry in the user-selectable model catalogue."""
    id: str
    name: str
    description: str = ""

    class Config:
        frozen = True


class SourceKind(str, Enum):
    PDF = "pdf"
    IMAGE = "image"


class ProcessingState(str, Enum):
    READING = "reading"
    SUMMARIZING = "summarizing"
    GENERATING_QUESTIONS = "generating_questions"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingState.DONE, ProcessingState.ERROR)

    def can_transition_to(self, target: "ProcessingState") -> bool:
        """
        Forward-only along reading -> summarizing -> generating_questions -> done.
        ERROR is reachable from any non-terminal state; both DONE and ERROR are terminal.
        """
        if self.is_terminal:
            return False
        if target is ProcessingState.ERROR:
            return True
        return _FORWARD_ORDER.index(target) > _FORWARD_ORDER.index(self)


_FORWARD_ORDER = [
    ProcessingState.READING,
    ProcessingState.SUMMARIZING,
    ProcessingState.GENERATING_QUESTIONS,
    ProcessingState.DONE,
]


class FileReference(BaseModel):
    """
    An uploaded file held in memory.

    The drag-and-drop area and the file picker both end up here, so the rest of
    the pipeline never touches the filesystem.
    """
    name: str = Field(..., description="Original filename")
    mime_type: str = Field(..., description="MIME type reported by the uploader or guessed from the name")
    data: bytes = Field(..., repr=False)

    class Config:
        frozen = True

    @property
    def source_kind(self) -> Optional[SourceKind]:
        if self.mime_type.startswith("image/"):
            return SourceKind.IMAGE
        if self.mime_type == "application/pdf" or self.name.lower().endswith(".pdf"):
            return SourceKind.PDF
        return None

    @classmethod
    def from_upload(cls, name: str, data: bytes, mime_type: Optional[str] = None) -> "FileReference":
        if not mime_type:
            mime_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        return cls(name=name, mime_type=mime_type, data=data)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "FileReference":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"File not found at: {path}")
        return cls.from_upload(path.name, path.read_bytes())


class ImagePart(BaseModel):
    """An inline image ready to be sent to a multimodal model."""
    mime_type: str
    base64_data: str = Field(..., repr=False)

    class Config:
        frozen = True

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_data}"


class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    content: str

    class Config:
        frozen = True


class ImageContent(BaseModel):
    kind: Literal["image"] = "image"
    parts: Tuple[ImagePart, ...]

    class Config:
        frozen = True


ExtractedContent = Union[TextContent, ImageContent]


class ChatMessage(BaseModel):
    """
    One bubble in the chat transcript.

    Messages are immutable. A streamed reply is updated by swapping in a new
    message carrying the same id, never by editing "the last message".
    """
    id: int
    sender: Literal["user", "bot"]
    text: str

    class Config:
        frozen = True


class QuizQuestion(BaseModel):
    question_text: str = Field(..., alias="questionText")
    options: Tuple[str, ...] = Field(..., min_length=1)
    correct_answer_index: int = Field(..., alias="correctAnswerIndex")
    explanation: str = Field(..., min_length=1)

    class Config:
        frozen = True
        populate_by_name = True

    @model_validator(mode="after")
    def _check_answer_index(self) -> "QuizQuestion":
        if not 0 <= self.correct_answer_index < len(self.options):
            raise ValueError(
                f"correctAnswerIndex {self.correct_answer_index} is out of range "
                f"for {len(self.options)} options"
            )
        return self


class QuizData(BaseModel):
    title: str
    questions: Tuple[QuizQuestion, ...] = Field(..., min_length=1)

    class Config:
        frozen = True
        populate_by_name = True


class UserAnswer(BaseModel):
    question_index: int
    selected_option_index: int
    is_correct: bool

    class Config:
        frozen = True


class PresetQuestionList(BaseModel):
    """Response schema for the starter-question request."""
    questions: List[str] = Field(..., min_length=1, description="Five short starter questions, one of them asking for a quiz")


class Document(BaseModel):
    """
    Per-upload state: extracted content, generated outputs and the chat transcript.

    Only the orchestrator, the chat service and the quiz session write to these
    fields. UI code reads them and dispatches intents through the controller.
    """
    id: str
    file: FileReference
    source_kind: SourceKind
    model: str
    processing_state: ProcessingState = ProcessingState.READING
    error_message: Optional[str] = None

    extracted_text: Optional[str] = None
    extracted_image_parts: Optional[Tuple[ImagePart, ...]] = None

    summary: str = ""
    preset_questions: Optional[List[str]] = None
    chat_history: List[ChatMessage] = Field(default_factory=list)

    # Runtime handles, never serialized
    chat_session: Optional[Any] = Field(default=None, exclude=True)
    chat_ready: Optional[Any] = Field(default=None, exclude=True)
    quiz_session: Optional[Any] = Field(default=None, exclude=True)

    _next_message_id: int = PrivateAttr(default=0)

    class Config:
        arbitrary_types_allowed = True

    @classmethod
    def create(cls, file: FileReference, model: str) -> "Document":
        kind = file.source_kind
        if kind is None:
            raise ExtractionError(f"Unsupported file type: {file.mime_type} ({file.name})")
        doc_id = f"{file.name}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
        return cls(id=doc_id, file=file, source_kind=kind, model=model)

    def transition_to(self, state: ProcessingState) -> None:
        if not self.processing_state.can_transition_to(state):
            raise ValueError(
                f"Illegal processing transition {self.processing_state.value} -> {state.value}"
            )
        self.processing_state = state

    def fail(self, message: str) -> None:
        self.error_message = message
        self.transition_to(ProcessingState.ERROR)

    # --- chat transcript (append-only, updates keyed by message id) ---

    def append_message(self, sender: str, text: str) -> ChatMessage:
        message = ChatMessage(id=self._next_message_id, sender=sender, text=text)
        self._next_message_id += 1
        self.chat_history.append(message)
        return message

    def upsert_message(self, message_id: int, sender: str, text: str) -> ChatMessage:
        """Replace the message with ``message_id`` in place, or append it if it is new."""
        message = ChatMessage(id=message_id, sender=sender, text=text)
        for idx, existing in enumerate(self.chat_history):
            if existing.id == message_id:
                self.chat_history[idx] = message
                return message
        self._next_message_id = max(self._next_message_id, message_id + 1)
        self.chat_history.append(message)
        return message

    def reserve_message_id(self) -> int:
        message_id = self._next_message_id
        self._next_message_id += 1
        return message_id
