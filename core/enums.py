"""Core enumerations for AutoAI"""

from enum import Enum


class AIType(str, Enum):
    """Hosted AI chat applications"""
    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    GEMINI = "gemini"
    GENSPARK = "genspark"

    @property
    def display_name(self) -> str:
        return {
            AIType.CHATGPT: "ChatGPT",
            AIType.CLAUDE: "Claude",
            AIType.GEMINI: "Gemini",
            AIType.GENSPARK: "Genspark",
        }[self]


# Answer-column order of a 3-type group, also the section order of log cells
THREE_TYPE_ORDER = (AIType.CHATGPT, AIType.CLAUDE, AIType.GEMINI)


class GroupKind(str, Enum):
    """Column group layout"""
    SINGLE = "single"
    THREE_TYPE = "3type"
    REPORT = "report"


class TaskType(str, Enum):
    """Work item variant"""
    AI = "ai"
    REPORT = "report"


class ControlScope(str, Enum):
    """What a control directive restricts"""
    ROW = "row"
    COLUMN = "column"


class ControlKind(str, Enum):
    """Control directive kind"""
    ONLY = "only"
    FROM = "from"
    UNTIL = "until"


class ColumnState(str, Enum):
    """Per column group scheduling state"""
    IDLE = "idle"
    CLAIMING = "claiming"
    RUNNING = "running"
    AWAITING_WRITE = "awaiting_write"
    CLOSED = "closed"


class OutcomeStatus(str, Enum):
    """How a task left the scheduler"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"
    SKIPPED = "skipped"
