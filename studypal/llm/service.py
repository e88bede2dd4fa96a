import logging
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar, Union

from langchain_community.chat_models.ollama import ChatOllama
from langchain_core.exceptions import OutputParserException
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage
from langchain_core.output_parsers import PydanticOutputParser, StrOutputParser
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel

from studypal.core.config import Config
from studypal.core.errors import ConfigurationError, GenerationError
from studypal.core.types import ImagePart
from studypal.llm.chat import ChatSession

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)
MessageContent = Union[str, List[Dict[str, Any]]]


def build_chat_model(model_name: str, temperature: Optional[float] = None) -> BaseChatModel:
    """
    Create the chat model behind every request for one document.

    Gemini is the production backend; LLM_PROVIDER=ollama swaps in a local model
    with the same interface.
    """
    if temperature is None:
        temperature = Config.TEMPERATURE

    if Config.LLM_PROVIDER == "ollama":
        logger.info("[LLM] Using local Ollama model %s", Config.OLLAMA_MODEL)
        return ChatOllama(
            base_url=Config.OLLAMA_BASE_URL,
            model=Config.OLLAMA_MODEL,
            temperature=temperature,
            keep_alive="1h",
        )

    if model_name not in Config.model_ids():
        raise ConfigurationError(
            f"Unknown model '{model_name}'. Choose one of: {', '.join(Config.model_ids())}"
        )
    if not Config.GOOGLE_API_KEY:
        raise ConfigurationError("GOOGLE_API_KEY environment variable not set")

    logger.info("[LLM] Initializing %s", model_name)
    return ChatGoogleGenerativeAI(
        model=model_name,
        google_api_key=Config.GOOGLE_API_KEY,
        temperature=temperature,
    )


def to_content(prompt: str, parts: Optional[Sequence[ImagePart]] = None) -> MessageContent:
    """Images first, then the instruction text. Text-only prompts stay plain strings."""
    if not parts:
        return prompt
    content: List[Dict[str, Any]] = [
        {"type": "image_url", "image_url": {"url": part.data_url}} for part in parts
    ]
    content.append({"type": "text", "text": prompt})
    return content


class LLMService:
    """
    The three operations the app needs from a generative model:
    free text, schema-validated JSON, and a persistent chat session.
    """

    def __init__(self, model_name: Optional[str] = None, llm: Optional[BaseChatModel] = None):
        self.model_name = model_name or Config.DEFAULT_MODEL
        self.llm = llm if llm is not None else build_chat_model(self.model_name)
        self.text_chain = self.llm | StrOutputParser()

    async def generate_text(self, prompt: str, parts: Optional[Sequence[ImagePart]] = None) -> str:
        try:
            return await self.text_chain.ainvoke([HumanMessage(content=to_content(prompt, parts))])
        except Exception as e:
            raise GenerationError(f"Text generation failed: {str(e)}") from e

    async def generate_structured(
        self,
        prompt: str,
        schema: Type[SchemaT],
        parts: Optional[Sequence[ImagePart]] = None,
    ) -> SchemaT:
        parser = PydanticOutputParser(pydantic_object=schema)
        full_prompt = f"{prompt}\n\n{parser.get_format_instructions()}"

        raw = await self.generate_text(full_prompt, parts)
        try:
            return parser.parse(raw)
        except OutputParserException as e:
            logger.warning("[LLM] Structured response did not match %s: %s", schema.__name__, raw[:200])
            raise GenerationError(f"Response did not match the {schema.__name__} schema") from e

    async def create_chat(self, persona: str, seed_history: Sequence[BaseMessage]) -> ChatSession:
        logger.info("[Chat] Opening session on %s with %d seed messages", self.model_name, len(seed_history))
        return ChatSession(self.llm, persona, seed_history)
