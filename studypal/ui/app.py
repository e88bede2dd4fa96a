import asyncio
import logging
import queue
import threading

import streamlit as st

from studypal.controller import StudyController
from studypal.core.config import Config
from studypal.core.errors import StudyPalError
from studypal.core.types import Document, FileReference, ProcessingState, SourceKind
from studypal.llm import prompts
from studypal.quiz.session import QuizPhase, QuizSession
from studypal.rendering.export import export_summary_pdf, summary_plain_text
from studypal.rendering.markdown import render, to_html

logging.basicConfig(level=Config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# Page Configuration
st.set_page_config(
    page_title=Config.PAGE_TITLE,
    page_icon=Config.PAGE_ICON,
    layout="wide"
)

PREVIEW_PAGES = 10


def initialize_state():
    """
    Centralized state initialization.

    All controller work runs on one background event loop, so the document
    pipeline stays single-threaded no matter how often Streamlit reruns.
    """
    if "loop" not in st.session_state:
        loop = asyncio.new_event_loop()
        threading.Thread(target=loop.run_forever, daemon=True).start()
        st.session_state.loop = loop

    if "controller" not in st.session_state:
        st.session_state.controller = StudyController()

    if "seen_uploads" not in st.session_state:
        st.session_state.seen_uploads = set()

    if "previews" not in st.session_state:
        st.session_state.previews = {}


def run_async(coro):
    return asyncio.run_coroutine_threadsafe(coro, st.session_state.loop).result()


def call_in_loop(fn, *args):
    async def _call():
        return fn(*args)
    return run_async(_call())


def show_markdown(text: str):
    st.markdown(to_html(render(text)), unsafe_allow_html=True)


def process_upload(uploaded_file):
    controller: StudyController = st.session_state.controller
    file = FileReference.from_upload(uploaded_file.name, uploaded_file.getvalue(), uploaded_file.type)

    with st.sidebar.status(f"📄 {uploaded_file.name}", expanded=True) as status:
        try:
            document = run_async(controller.add_file(file))
        except StudyPalError as e:
            status.update(label=f"❌ {e}", state="error")
            return

        st.write(controller.status_label(document))
        document = run_async(controller.process_and_wait(document.id))
        if document is None:
            status.update(label="Removed before processing finished", state="complete", expanded=False)
        elif document.processing_state is ProcessingState.ERROR:
            status.update(label=f"❌ {document.error_message}", state="error")
        else:
            status.update(label=f"✅ {uploaded_file.name} is ready", state="complete", expanded=False)


def render_sidebar():
    controller: StudyController = st.session_state.controller
    state = controller.state

    with st.sidebar:
        st.header("🗂️ My Files")

        model_ids = Config.model_ids()
        chosen = st.selectbox(
            "Model for new files",
            model_ids,
            index=model_ids.index(state.selected_model) if state.selected_model in model_ids else 0,
            format_func=lambda m: Config.get_model_info(m).name,
            help="\n\n".join(f"**{m.name}**: {m.description}" for m in Config.AVAILABLE_MODELS),
        )
        if chosen != state.selected_model:
            call_in_loop(controller.set_model, chosen)

        uploaded_file = st.file_uploader(
            "New File",
            type=["pdf", "png", "jpg", "jpeg", "webp", "gif"],
            help="Drop a PDF or an image of your notes",
        )
        if uploaded_file is not None and uploaded_file.file_id not in st.session_state.seen_uploads:
            st.session_state.seen_uploads.add(uploaded_file.file_id)
            process_upload(uploaded_file)

        st.divider()

        if not state.documents:
            st.info("📭 No files yet. Upload a PDF or image to get started.")
            return

        for doc in state.documents:
            col1, col2 = st.columns([4, 1])
            with col1:
                marker = "▶ " if doc.id == state.active_id else ""
                if st.button(f"{marker}{doc.file.name}", key=f"select_{doc.id}", use_container_width=True):
                    call_in_loop(controller.select, doc.id)
                    st.rerun()
            with col2:
                if st.button("🗑️", key=f"delete_{doc.id}", help=f"Delete {doc.file.name}"):
                    call_in_loop(controller.delete, doc.id)
                    st.session_state.previews.pop(doc.id, None)
                    st.rerun()


def render_preview(document: Document):
    controller: StudyController = st.session_state.controller
    st.subheader("📄 Preview")

    if document.processing_state is ProcessingState.ERROR:
        st.error(document.error_message)
        return
    if document.source_kind is SourceKind.IMAGE:
        st.image(document.file.data, use_container_width=True)
        return

    pages = st.session_state.previews.get(document.id)
    if pages is None:
        try:
            pages = run_async(controller.load_preview(document.id, max_pages=PREVIEW_PAGES))
        except StudyPalError as e:
            st.error(str(e))
            return
        if pages is None:
            return
        st.session_state.previews[document.id] = pages
    for png in pages:
        st.image(png, use_container_width=True)


def render_quiz(document: Document, quiz: QuizSession):
    controller: StudyController = st.session_state.controller

    with st.container(border=True):
        if quiz.phase is QuizPhase.RESULTS:
            st.markdown("### 📝 Quiz Results")
            st.markdown(f"**{quiz.summary_line()}**")
            if quiz.is_perfect:
                st.balloons()
            col1, col2 = st.columns(2)
            if col1.button("Try Again", use_container_width=True):
                call_in_loop(quiz.restart)
                st.rerun()
            if col2.button("Create Another Quiz", use_container_width=True, type="primary"):
                with st.spinner(prompts.QUIZ_CRAFTING_MESSAGE):
                    run_async(controller.request_another_quiz())
                st.rerun()
            return

        question = quiz.current_question
        st.markdown(f"### {quiz.quiz.title}")
        st.caption(f"Question {quiz.question_index + 1} of {quiz.total}")
        st.markdown(question.question_text)

        submitted = quiz.phase is QuizPhase.SUBMITTED
        choice = st.radio(
            "Options",
            range(len(question.options)),
            index=quiz.selected_option,
            format_func=lambda i: question.options[i],
            key=f"quiz_{document.id}_{quiz.question_index}_{len(quiz.answers)}",
            disabled=submitted,
            label_visibility="collapsed",
        )
        if choice is not None and not submitted and choice != quiz.selected_option:
            call_in_loop(quiz.select_option, choice)

        if submitted:
            correct_index, explanation = quiz.revealed_answer
            if quiz.last_answer.is_correct:
                st.success(f"✅ Correct: {question.options[correct_index]}")
            else:
                st.error(f"❌ The right answer is: {question.options[correct_index]}")
            st.warning(f"**Explanation:** {explanation}")
            label = "Show Results" if quiz.is_last_question else "Next Question"
            if st.button(label, type="primary", use_container_width=True):
                call_in_loop(quiz.next)
                st.rerun()
        elif st.button("Submit Answer", type="primary", use_container_width=True, disabled=not quiz.can_submit):
            call_in_loop(quiz.submit)
            st.rerun()


def send_and_stream(prompt: str):
    """Send a turn on the loop thread and repaint the reply bubble as chunks arrive."""
    controller: StudyController = st.session_state.controller
    updates: "queue.Queue" = queue.Queue()

    with st.chat_message("user"):
        show_markdown(prompt)
    with st.chat_message("assistant"):
        placeholder = st.empty()
        future = asyncio.run_coroutine_threadsafe(
            controller.send_message(prompt, on_update=lambda doc, msg: updates.put(msg)),
            st.session_state.loop,
        )
        while not future.done() or not updates.empty():
            try:
                message = updates.get(timeout=0.1)
            except queue.Empty:
                continue
            if message.sender == "bot":
                with placeholder.container():
                    show_markdown(message.text)
        future.result()
    st.rerun()


def render_chat(document: Document):
    for message in document.chat_history:
        with st.chat_message("user" if message.sender == "user" else "assistant"):
            show_markdown(message.text)

    if document.quiz_session is not None:
        render_quiz(document, document.quiz_session)

    if document.preset_questions:
        with st.expander("💡 Try one of these", expanded=len(document.chat_history) <= 1):
            for idx, question in enumerate(document.preset_questions):
                if st.button(question, key=f"preset_{document.id}_{idx}", use_container_width=True):
                    send_and_stream(question)

    if prompt := st.chat_input("Ask a question about your document...", disabled=document.processing_state is not ProcessingState.DONE):
        send_and_stream(prompt)


def render_summary(document: Document):
    if document.processing_state is not ProcessingState.DONE:
        st.info("Summary is being generated...")
        return

    show_markdown(document.summary)
    st.divider()
    col1, col2 = st.columns(2)
    with col1:
        with st.popover("📋 Copy as text", use_container_width=True):
            st.code(summary_plain_text(document.summary), language=None)
    with col2:
        st.download_button(
            "⬇️ Download PDF",
            data=export_summary_pdf(f"Summary: {document.file.name}", document.summary),
            file_name=f"{document.file.name.rsplit('.', 1)[0]}-summary.pdf",
            mime="application/pdf",
            use_container_width=True,
        )


def render_workspace():
    controller: StudyController = st.session_state.controller
    document = controller.state.active

    st.title("📚 AI Study Pal")
    if document is None:
        st.markdown("Upload a PDF or an image of your notes and I'll summarize it, suggest questions and quiz you on it.")
        return

    if not document.processing_state.is_terminal:
        with st.spinner(controller.status_label(document)):
            run_async(controller.process_and_wait(document.id))
        st.rerun()

    preview_col, interaction_col = st.columns([2, 3])
    with preview_col:
        render_preview(document)
    with interaction_col:
        chat_tab, summary_tab = st.tabs(["💬 Chat", "🧾 Summary"])
        with chat_tab:
            if document.processing_state is ProcessingState.DONE:
                render_chat(document)
            else:
                st.error(document.error_message)
        with summary_tab:
            render_summary(document)


def main():
    """
    Application entry point
    """
    initialize_state()
    render_sidebar()
    render_workspace()


if __name__ == "__main__":
    main()
