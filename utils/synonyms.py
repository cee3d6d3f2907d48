"""Sheet label synonym dictionaries and normalization"""

import re
from typing import Dict, List, Optional

from core.enums import AIType
from .fuzzy import fuzzy_match_label


# Column A labels of the header rows
ROW_LABEL_SYNONYMS: Dict[str, List[str]] = {
    "menu": ["menu", "メニュー", "列の使い方"],
    "ai": ["ai", "ai type", "ai-type", "aiタイプ"],
    "model": ["model", "モデル"],
    "function": ["function", "feature", "機能"],
}

# Menu row labels
MENU_LABEL_SYNONYMS: Dict[str, List[str]] = {
    "log": ["log", "ログ"],
    "prompt": ["prompt", "prompt1", "プロンプト", "プロンプト1"],
    "prompt2": ["prompt2", "プロンプト2"],
    "prompt3": ["prompt3", "プロンプト3"],
    "prompt4": ["prompt4", "プロンプト4"],
    "prompt5": ["prompt5", "プロンプト5"],
    "answer": ["answer", "回答"],
    "chatgpt_answer": ["chatgpt answer", "chatgpt回答"],
    "claude_answer": ["claude answer", "claude回答"],
    "gemini_answer": ["gemini answer", "gemini回答"],
    "genspark_answer": ["genspark answer", "genspark回答"],
    "reportify": ["reportify", "report", "レポート化"],
}

ANSWER_LABEL_AI: Dict[str, AIType] = {
    "chatgpt_answer": AIType.CHATGPT,
    "claude_answer": AIType.CLAUDE,
    "gemini_answer": AIType.GEMINI,
    "genspark_answer": AIType.GENSPARK,
}

# Substrings of the AI-row cell that mark a 3-type group
THREE_TYPE_LABELS: List[str] = ["3種類", "3 kinds", "3 types", "3type", "3-type", "three types"]

AI_NAME_SYNONYMS: Dict[str, List[str]] = {
    AIType.CHATGPT.value: ["chatgpt", "chat gpt", "gpt", "openai"],
    AIType.CLAUDE.value: ["claude", "anthropic"],
    AIType.GEMINI.value: ["gemini", "bard", "google"],
    AIType.GENSPARK.value: ["genspark"],
}

# Exact tokens in a row's control cells that override the group's model
SPECIAL_MODEL_MAP: Dict[str, str] = {
    "o3": "o3",
    "o3-pro": "o3-pro",
}

# Exact tokens in a row's control cells that override the group's function
SPECIAL_OPERATION_MAP: Dict[str, str] = {
    "deepresearch": "Deep Research",
    "deep research": "Deep Research",
    "agent": "Agent",
    "エージェント": "Agent",
    "canvas": "Canvas",
    "web search": "Web Search",
    "ウェブ検索": "Web Search",
}

# Feature name -> key of the timeout table
FEATURE_ALIASES: Dict[str, str] = {
    "deep research": "Deep Research",
    "deepresearch": "Deep Research",
    "deep_research": "Deep Research",
    "ディープリサーチ": "Deep Research",
    "agent": "Agent",
    "agent mode": "Agent",
    "agentmode": "Agent",
    "エージェント": "Agent",
    "エージェントモード": "Agent",
    "canvas": "Canvas",
    "キャンバス": "Canvas",
    "web search": "Web Search",
    "websearch": "Web Search",
    "web_search": "Web Search",
    "ウェブ検索": "Web Search",
    "normal": "Normal",
    "standard": "Normal",
    "通常": "Normal",
    "標準": "Normal",
}


def normalize_text(raw: Optional[str]) -> str:
    """Lowercase, trim and collapse whitespace (full-width spaces included)"""
    if raw is None:
        return ""
    text = str(raw).replace("　", " ").strip().lower()
    return re.sub(r"\s+", " ", text)


def _match(raw: Optional[str], synonym_dict: Dict[str, List[str]], fuzzy: bool) -> Optional[str]:
    label = normalize_text(raw)
    if not label:
        return None

    for canonical, synonyms in synonym_dict.items():
        if label == canonical or label in synonyms:
            return canonical

    if not fuzzy:
        return None

    return fuzzy_match_label(label, synonym_dict)


def match_row_label(raw: Optional[str], fuzzy: bool = True) -> Optional[str]:
    """Canonical header-row label (menu/ai/model/function) or None"""
    return _match(raw, ROW_LABEL_SYNONYMS, fuzzy)


def match_menu_label(raw: Optional[str], fuzzy: bool = True) -> Optional[str]:
    """Canonical menu-row label or None"""
    return _match(raw, MENU_LABEL_SYNONYMS, fuzzy)


def is_three_type_label(raw: Optional[str]) -> bool:
    text = normalize_text(raw)
    return any(label in text for label in THREE_TYPE_LABELS)


def parse_ai_type(raw: Optional[str]) -> Optional[AIType]:
    """AI type named by an AI-row cell, None when blank or unknown"""
    text = normalize_text(raw)
    if not text:
        return None
    for value, synonyms in AI_NAME_SYNONYMS.items():
        if text == value or text in synonyms:
            return AIType(value)
    for value, synonyms in AI_NAME_SYNONYMS.items():
        if any(synonym in text for synonym in synonyms):
            return AIType(value)
    return None


def special_model(raw: Optional[str]) -> Optional[str]:
    return SPECIAL_MODEL_MAP.get(normalize_text(raw))


def special_operation(raw: Optional[str]) -> Optional[str]:
    return SPECIAL_OPERATION_MAP.get(normalize_text(raw))


def normalize_feature(raw: Optional[str]) -> Optional[str]:
    """Timeout table key for a feature name; None for blank, the raw name when unknown"""
    text = normalize_text(raw)
    if not text:
        return None
    return FEATURE_ALIASES.get(text, str(raw).strip())
