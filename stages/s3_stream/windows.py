"""AI URLs and window placement"""

from typing import Optional

from core.enums import AIType
from core.models import ScreenBounds, WindowBounds


DEFAULT_CHATGPT_MODEL = "gpt-4o"

AI_URLS = {
    AIType.CLAUDE: "https://claude.ai/new",
    AIType.GEMINI: "https://gemini.google.com/app",
    AIType.GENSPARK: "https://www.genspark.ai",
}


def determine_ai_url(ai_type: AIType, model: Optional[str] = None) -> str:
    """Start URL for an AI; ChatGPT selects its model through the query string"""
    if ai_type == AIType.CHATGPT:
        return f"https://chatgpt.com/?model={model or DEFAULT_CHATGPT_MODEL}"
    return AI_URLS[ai_type]


def quadrant_bounds(position: int, screen: ScreenBounds) -> WindowBounds:
    """Slot position -> screen quadrant: 0 top-left, 1 top-right, 2 bottom-left, 3 bottom-right"""
    half_width = screen.width // 2
    half_height = screen.height // 2
    quadrant = position % 4
    return WindowBounds(
        left=screen.left + (quadrant % 2) * half_width,
        top=screen.top + (quadrant // 2) * half_height,
        width=half_width,
        height=half_height,
    )
