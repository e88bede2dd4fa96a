import os
from typing import List, Optional

from dotenv import load_dotenv

from studypal.core.types import ModelInfo

load_dotenv()


class Config:
    # --- 1. Credentials ---
    GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY") or os.getenv("API_KEY")

    # --- 2. LLM & Brain Settings ---
    # "google" talks to Gemini; "ollama" points the same pipeline at a local model for offline work
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "google")
    OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.2:3b")
    TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.4"))

    AVAILABLE_MODELS: List[ModelInfo] = [
        ModelInfo(id="gemini-2.5-flash", name="Gemini 2.5 Flash", description="Fast and cost-effective for most tasks."),
        ModelInfo(id="gemini-2.5-pro", name="Gemini 2.5 Pro", description="Advanced reasoning for complex topics."),
    ]
    DEFAULT_MODEL = os.getenv("STUDYPAL_MODEL", "gemini-2.5-flash")

    # --- 3. Extraction Settings ---
    MIN_TEXT_CHARS = 100      # Below this a PDF is treated as a scan
    MAX_RASTER_PAGES = 5      # Leading pages sent as images for scans
    RENDER_SCALE = 1.5
    JPEG_QUALITY = 80
    PREVIEW_SCALE = 1.0

    # --- 4. Chat Settings ---
    QUIZ_CRAFTING_DELAY = float(os.getenv("QUIZ_CRAFTING_DELAY", "1.5"))  # seconds, 0 disables
    STREAM_RESPONSES = os.getenv("STREAM_RESPONSES", "true").lower() == "true"

    # --- 5. UI Settings ---
    PAGE_TITLE = "AI Study Pal"
    PAGE_ICON = "📚"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def model_ids(cls) -> List[str]:
        return [m.id for m in cls.AVAILABLE_MODELS]

    @classmethod
    def get_model_info(cls, model_id: str) -> Optional[ModelInfo]:
        for model in cls.AVAILABLE_MODELS:
            if model.id == model_id:
                return model
        return None
