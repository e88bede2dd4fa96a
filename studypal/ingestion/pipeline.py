import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from studypal.core.errors import GenerationError
from studypal.core.types import (
    Document,
    ExtractedContent,
    ImagePart,
    PresetQuestionList,
    ProcessingState,
    TextContent,
)
from studypal.ingestion.extractor import DocumentExtractor
from studypal.llm import prompts
from studypal.llm.service import LLMService, to_content

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[str], LLMService]
RelevanceCheck = Callable[[], bool]


def _always_current() -> bool:
    return True


class DocumentProcessor:
    """
    Orchestrates one upload: extract -> summary + starter questions (concurrently)
    -> chat session seeded with the document.

    State moves reading -> summarizing -> generating_questions -> done, or to
    error from any of those. Nothing is written to the document once
    ``is_current`` reports that it was deleted or superseded.
    """

    def __init__(self, extractor: Optional[DocumentExtractor] = None, service_factory: Optional[ServiceFactory] = None):
        self.extractor = extractor or DocumentExtractor()
        self.service_factory = service_factory or LLMService

    async def process(self, document: Document, is_current: Optional[RelevanceCheck] = None) -> None:
        is_current = is_current or _always_current
        logger.info("[Pipeline] Starting %s (%s, %s)", document.file.name, document.source_kind.value, document.model)

        pending: List[asyncio.Task] = []
        try:
            # --- Step 1: Extract ---
            content = await self.extractor.extract(document.file)
            if not is_current():
                logger.info("[Pipeline] %s is no longer current, dropping extraction result", document.id)
                return
            self._store_content(document, content)
            document.transition_to(ProcessingState.SUMMARIZING)

            # --- Step 2: Generate (summary and questions race; chat is seeded alongside) ---
            service = self.service_factory(document.model)
            text, parts = self._prompt_inputs(content)
            summary_task = asyncio.create_task(self._generate_summary(service, text, parts))
            questions_task = asyncio.create_task(self._generate_questions(service, text, parts))
            chat_task = asyncio.create_task(
                service.create_chat(prompts.AI_PERSONA_PROMPT, self._seed_history(text, parts))
            )
            pending = [summary_task, questions_task, chat_task]

            summary = await summary_task
            if not is_current():
                return
            document.transition_to(ProcessingState.GENERATING_QUESTIONS)
            preset_questions = await questions_task
            if not is_current():
                return

            if chat_task.done() and chat_task.exception() is not None:
                raise chat_task.exception()

            # --- Step 3: Publish (all fields land together, then done) ---
            document.summary = summary
            document.preset_questions = preset_questions
            document.chat_ready = chat_task
            if chat_task.done():
                document.chat_session = chat_task.result()
            document.append_message("bot", prompts.INITIAL_BOT_MESSAGE)
            document.transition_to(ProcessingState.DONE)
            pending = []
            logger.info("[Pipeline] Finished %s", document.file.name)

        except asyncio.CancelledError:
            logger.info("[Pipeline] Processing of %s was cancelled", document.id)
            raise
        except Exception as e:
            if not is_current() or document.processing_state.is_terminal:
                return
            logger.error("[Pipeline] %s failed: %s", document.file.name, e)
            document.fail(f"Failed to process: {str(e)}")
        finally:
            for task in pending:
                if not task.done():
                    task.cancel()

    def _store_content(self, document: Document, content: ExtractedContent) -> None:
        if isinstance(content, TextContent):
            document.extracted_text = content.content
        else:
            document.extracted_image_parts = content.parts

    def _prompt_inputs(self, content: ExtractedContent):
        if isinstance(content, TextContent):
            return content.content, None
        return None, list(content.parts)

    async def _generate_summary(self, service: LLMService, text: Optional[str], parts: Optional[Sequence[ImagePart]]) -> str:
        prompt = prompts.with_document_text(prompts.SUMMARY_PROMPT, text)
        summary = await service.generate_text(prompt, parts)
        if not summary or not summary.strip():
            raise GenerationError("The model returned an empty summary.")
        logger.info("[Summary] %d chars", len(summary))
        return summary

    async def _generate_questions(self, service: LLMService, text: Optional[str], parts: Optional[Sequence[ImagePart]]) -> List[str]:
        prompt = prompts.with_document_text(prompts.PRESET_QUESTIONS_PROMPT, text)
        try:
            result = await service.generate_structured(prompt, PresetQuestionList, parts)
            questions = [q.strip() for q in result.questions if q and q.strip()]
            if not questions:
                raise GenerationError("No starter questions in response")
        except GenerationError as e:
            logger.warning("[Questions] Falling back to default questions: %s", e)
            return list(prompts.FALLBACK_PRESET_QUESTIONS)
        logger.info("[Questions] %d starter questions", len(questions))
        return questions

    def _seed_history(self, text: Optional[str], parts: Optional[Sequence[ImagePart]]) -> List[BaseMessage]:
        if text:
            first_turn = HumanMessage(content=prompts.with_document_text(prompts.SEED_TEXT_INSTRUCTION, text))
        else:
            first_turn = HumanMessage(content=to_content(prompts.SEED_IMAGE_INSTRUCTION, parts))
        return [first_turn, AIMessage(content=prompts.SEED_ACKNOWLEDGEMENT)]
