import asyncio
import logging
from typing import Dict, List, Optional

from studypal.core.config import Config
from studypal.core.errors import ConfigurationError
from studypal.core.types import ChatMessage, Document, FileReference, ProcessingState
from studypal.ingestion.extractor import DocumentExtractor
from studypal.ingestion.pipeline import DocumentProcessor
from studypal.llm.chat import ChatService, UpdateCallback

logger = logging.getLogger(__name__)


class AppState:
    """
    Everything the UI shows: the open documents (newest first), which one is
    active, and the model new uploads will use.

    ``selection_epoch`` changes whenever the active document changes, so slow
    work started for one selection can tell it has gone stale.
    """

    def __init__(self, selected_model: Optional[str] = None):
        self.documents: List[Document] = []
        self.active_id: Optional[str] = None
        self.selected_model = selected_model or Config.DEFAULT_MODEL
        self.selection_epoch = 0

    def get(self, doc_id: Optional[str]) -> Optional[Document]:
        for doc in self.documents:
            if doc.id == doc_id:
                return doc
        return None

    @property
    def active(self) -> Optional[Document]:
        return self.get(self.active_id)

    def contains(self, document: Document) -> bool:
        return any(doc is document for doc in self.documents)


class StudyController:
    """The single writer of AppState; the UI only reads state and calls these intents."""

    def __init__(
        self,
        processor: Optional[DocumentProcessor] = None,
        chat_service: Optional[ChatService] = None,
        extractor: Optional[DocumentExtractor] = None,
        state: Optional[AppState] = None,
    ):
        self.extractor = extractor or DocumentExtractor()
        self.processor = processor or DocumentProcessor(extractor=self.extractor)
        self.chat_service = chat_service or ChatService()
        self.state = state or AppState()
        self._tasks: Dict[str, asyncio.Task] = {}

    # --- documents ---

    async def add_file(self, file: FileReference) -> Document:
        """Register an upload, make it active and start processing it in the background."""
        document = Document.create(file, self.state.selected_model)
        self.state.documents.insert(0, document)
        self.select(document.id)

        task = asyncio.create_task(
            self.processor.process(document, is_current=lambda: self.state.contains(document))
        )
        self._tasks[document.id] = task
        task.add_done_callback(lambda t, doc_id=document.id: self._tasks.pop(doc_id, None))
        logger.info("[Controller] Added %s as %s", file.name, document.id)
        return document

    async def process_and_wait(self, doc_id: str) -> Optional[Document]:
        task = self._tasks.get(doc_id)
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                # Deleting the document cancels its task; only our own cancellation propagates
                if not task.cancelled():
                    raise
        return self.state.get(doc_id)

    def select(self, doc_id: Optional[str]) -> None:
        if doc_id is not None and self.state.get(doc_id) is None:
            raise KeyError(f"No document with id {doc_id}")
        if doc_id != self.state.active_id:
            self.state.active_id = doc_id
            self.state.selection_epoch += 1

    def delete(self, doc_id: str) -> None:
        document = self.state.get(doc_id)
        if document is None:
            return
        self.state.documents = [doc for doc in self.state.documents if doc.id != doc_id]

        task = self._tasks.pop(doc_id, None)
        if task is not None and not task.done():
            task.cancel()
        if document.chat_ready is not None and not document.chat_ready.done():
            document.chat_ready.cancel()

        if self.state.active_id == doc_id:
            self.select(self.state.documents[0].id if self.state.documents else None)
        logger.info("[Controller] Deleted %s", doc_id)

    def set_model(self, model_id: str) -> None:
        if model_id not in Config.model_ids():
            raise ConfigurationError(f"Unknown model '{model_id}'")
        self.state.selected_model = model_id

    # --- chat & quiz ---

    async def send_message(
        self,
        text: str,
        stream: Optional[bool] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> Optional[ChatMessage]:
        document = self.state.active
        if document is None:
            return None
        return await self.chat_service.send_message(document, text, stream=stream, on_update=on_update)

    async def request_another_quiz(self, on_update: Optional[UpdateCallback] = None) -> Optional[ChatMessage]:
        document = self.state.active
        if document is None:
            return None
        return await self.chat_service.request_another_quiz(document, on_update=on_update)

    # --- preview ---

    async def load_preview(self, doc_id: str, max_pages: Optional[int] = None) -> Optional[List[bytes]]:
        """
        Render preview pages for ``doc_id``. Returns None when the selection moved
        on or the document was deleted before rendering finished.
        """
        document = self.state.get(doc_id)
        if document is None:
            return None
        epoch = self.state.selection_epoch

        def still_relevant() -> bool:
            return self.state.selection_epoch == epoch and self.state.contains(document)

        count = await self.extractor.page_count(document.file)
        if max_pages is not None:
            count = min(count, max_pages)

        pages: List[bytes] = []
        for page_number in range(count):
            png = await self.extractor.render_page(document.file, page_number)
            if not still_relevant():
                logger.debug("[Preview] Discarding stale render of %s", doc_id)
                return None
            pages.append(png)
        return pages

    def status_label(self, document: Document) -> str:
        info = Config.get_model_info(document.model)
        model_name = info.name if info else document.model
        labels = {
            ProcessingState.READING: "Reading document...",
            ProcessingState.SUMMARIZING: f"Summarizing with {model_name}...",
            ProcessingState.GENERATING_QUESTIONS: f"Generating smart questions with {model_name}... 🤔",
            ProcessingState.DONE: "Ready",
            ProcessingState.ERROR: document.error_message or "Something went wrong.",
        }
        return labels[document.processing_state]
