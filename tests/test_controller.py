import asyncio

import pytest

from studypal.controller import AppState, StudyController
from studypal.core.errors import ConfigurationError, ExtractionError
from studypal.core.types import Document, FileReference, ProcessingState
from studypal.ingestion.pipeline import DocumentProcessor
from studypal.llm.chat import ChatService

from fakes import SAMPLE_TEXT, FakeChatSession, FakeLLMService, pdf_file


class GatedLLMService(FakeLLMService):
    """Holds the summary request until the test opens the gate."""

    def __init__(self, gate: asyncio.Event, **kwargs):
        super().__init__(**kwargs)
        self.gate = gate

    async def generate_text(self, prompt, parts=None):
        await self.gate.wait()
        return await super().generate_text(prompt, parts)


def make_controller(service=None) -> StudyController:
    service = service or FakeLLMService(chat_session=FakeChatSession(["Glucose stores the energy. 🍬"]))
    processor = DocumentProcessor(service_factory=lambda model: service)
    return StudyController(processor=processor, chat_service=ChatService(crafting_delay=0, stream=False))


async def wait_for_state(document, state):
    for _ in range(500):
        if document.processing_state is state:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"{document.id} never reached {state.value}")


def test_add_file_processes_and_activates():
    controller = make_controller()

    async def run():
        document = await controller.add_file(pdf_file([SAMPLE_TEXT]))
        assert controller.state.active is document
        assert document.processing_state is ProcessingState.READING
        return await controller.process_and_wait(document.id)

    document = asyncio.run(run())

    assert document.processing_state is ProcessingState.DONE
    assert controller.state.documents == [document]
    assert document.model == controller.state.selected_model


def test_newest_document_first():
    controller = make_controller()

    async def run():
        first = await controller.add_file(pdf_file([SAMPLE_TEXT], name="first.pdf"))
        second = await controller.add_file(pdf_file([SAMPLE_TEXT], name="second.pdf"))
        await controller.process_and_wait(first.id)
        await controller.process_and_wait(second.id)
        return first, second

    first, second = asyncio.run(run())

    assert controller.state.documents == [second, first]
    assert controller.state.active_id == second.id


def test_unsupported_upload_is_rejected():
    controller = make_controller()

    with pytest.raises(ExtractionError):
        asyncio.run(controller.add_file(FileReference.from_upload("notes.txt", b"hi", "text/plain")))
    assert controller.state.documents == []


def test_delete_during_processing_discards_results():
    gate = asyncio.Event()
    service = GatedLLMService(gate)
    controller = make_controller(service)

    async def run():
        document = await controller.add_file(pdf_file([SAMPLE_TEXT]))
        await wait_for_state(document, ProcessingState.SUMMARIZING)
        controller.delete(document.id)
        gate.set()
        await asyncio.sleep(0.05)
        return document, await controller.process_and_wait(document.id)

    document, looked_up = asyncio.run(run())

    assert looked_up is None
    assert controller.state.documents == []
    assert controller.state.active_id is None
    assert document.processing_state is ProcessingState.SUMMARIZING
    assert document.summary == ""
    assert document.chat_history == []


def test_delete_active_selects_next():
    controller = make_controller()

    async def run():
        older = await controller.add_file(pdf_file([SAMPLE_TEXT], name="older.pdf"))
        newer = await controller.add_file(pdf_file([SAMPLE_TEXT], name="newer.pdf"))
        await controller.process_and_wait(older.id)
        await controller.process_and_wait(newer.id)
        controller.delete(newer.id)
        return older

    older = asyncio.run(run())

    assert controller.state.active is older
    controller.delete("missing-id")
    assert controller.state.documents == [older]


def test_select_unknown_document():
    controller = make_controller()
    epoch = controller.state.selection_epoch

    with pytest.raises(KeyError):
        controller.select("nope")
    assert controller.state.selection_epoch == epoch


def test_set_model_validates_catalogue():
    controller = make_controller()

    controller.set_model("gemini-2.5-pro")
    assert controller.state.selected_model == "gemini-2.5-pro"

    with pytest.raises(ConfigurationError):
        controller.set_model("gpt-unknown")
    assert controller.state.selected_model == "gemini-2.5-pro"


def test_send_message_goes_to_active_document():
    controller = make_controller()

    async def run():
        assert await controller.send_message("Hello?") is None
        assert await controller.request_another_quiz() is None
        document = await controller.add_file(pdf_file([SAMPLE_TEXT]))
        await controller.process_and_wait(document.id)
        return document, await controller.send_message("What stores energy?")

    document, reply = asyncio.run(run())

    assert reply.text == "Glucose stores the energy. 🍬"
    assert [m.sender for m in document.chat_history] == ["bot", "user", "bot"]


def test_preview_renders_pages():
    controller = make_controller()
    document = Document.create(pdf_file([SAMPLE_TEXT, SAMPLE_TEXT, SAMPLE_TEXT]), "gemini-2.5-flash")
    controller.state.documents.append(document)
    controller.select(document.id)

    pages = asyncio.run(controller.load_preview(document.id, max_pages=2))

    assert len(pages) == 2
    assert all(png.startswith(b"\x89PNG") for png in pages)
    assert asyncio.run(controller.load_preview("missing")) is None


def test_preview_discarded_when_selection_changes():
    controller = make_controller()
    first = Document.create(pdf_file([SAMPLE_TEXT]), "gemini-2.5-flash")
    second = Document.create(pdf_file([SAMPLE_TEXT]), "gemini-2.5-flash")
    controller.state.documents.extend([first, second])
    controller.select(first.id)

    async def run():
        task = asyncio.create_task(controller.load_preview(first.id))
        await asyncio.sleep(0)
        controller.select(second.id)
        return await task

    assert asyncio.run(run()) is None


def test_status_labels_follow_state():
    controller = StudyController(state=AppState(selected_model="gemini-2.5-pro"))
    document = Document.create(pdf_file([SAMPLE_TEXT]), "gemini-2.5-pro")

    assert controller.status_label(document) == "Reading document..."
    document.transition_to(ProcessingState.SUMMARIZING)
    assert controller.status_label(document) == "Summarizing with Gemini 2.5 Pro..."
    document.transition_to(ProcessingState.GENERATING_QUESTIONS)
    assert controller.status_label(document) == "Generating smart questions with Gemini 2.5 Pro... 🤔"
    document.fail("Failed to process: boom")
    assert controller.status_label(document) == "Failed to process: boom"
