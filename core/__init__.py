"""Core abstractions for the AutoAI stream scheduler"""

from .models import *
from .enums import *
from .exceptions import *
from .interfaces import *

__all__ = [
    # Models
    "SpreadsheetContext",
    "SheetGrid",
    "SpecialRows",
    "AnswerColumn",
    "ColumnGroup",
    "ControlDirective",
    "ControlSet",
    "StructureResult",
    "GenerationInput",
    "AiTask",
    "ReportTask",
    "Task",
    "TaskList",
    "StreamOptions",
    "ScreenBounds",
    "WindowBounds",
    "WindowHandle",
    "WindowSlot",
    "PromptResponse",
    "TaskOutcome",
    "ColumnProgress",
    "StreamStatus",
    "StreamResult",
    "ExclusiveMarker",
    "LogEntry",
    "ReportRequest",
    # Enums
    "AIType",
    "THREE_TYPE_ORDER",
    "GroupKind",
    "TaskType",
    "ControlScope",
    "ControlKind",
    "ColumnState",
    "OutcomeStatus",
    # Exceptions
    "AutoAIError",
    "PipelineError",
    "StageError",
    "StructureParseWarning",
    "ExecutionError",
    "ExecutionTimeout",
    "WindowCreationError",
    "PersistenceError",
    "SlotUnavailableError",
    "BridgeError",
    # Interfaces
    "Stage",
    "SheetsGateway",
    "WindowGateway",
    "TabMessenger",
    "AuthProvider",
    "ReportBuilder",
    "AutomationContext",
]
