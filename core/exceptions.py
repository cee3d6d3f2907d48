"""Custom exceptions for AutoAI"""


class AutoAIError(Exception):
    """Base exception for all AutoAI errors"""
    pass


class PipelineError(AutoAIError):
    """Error in pipeline execution"""
    def __init__(self, message: str, stage: int = None):
        super().__init__(message)
        self.stage = stage


class StageError(AutoAIError):
    """Error in a specific stage"""
    def __init__(self, stage: int, message: str):
        super().__init__(f"Stage {stage}: {message}")
        self.stage = stage
        self.message = message


class StructureParseWarning(AutoAIError):
    """Missing or malformed structure row/column; the analyzer degrades to defaults"""
    def __init__(self, message: str, row: int = None, column: str = None):
        super().__init__(message)
        self.row = row
        self.column = column


class ExecutionError(AutoAIError):
    """Prompt automation failed inside a tab"""
    def __init__(self, message: str, cell: str = None):
        super().__init__(message)
        self.cell = cell


class ExecutionTimeout(ExecutionError):
    """No response within the feature timeout"""
    def __init__(self, message: str, cell: str = None, timeout: float = None):
        super().__init__(message, cell)
        self.timeout = timeout


class WindowCreationError(AutoAIError):
    """Browser window could not be opened or never became ready"""
    def __init__(self, message: str, cell: str = None):
        super().__init__(message)
        self.cell = cell


class PersistenceError(AutoAIError):
    """Spreadsheet write failed"""
    def __init__(self, message: str, cell: str = None):
        super().__init__(message)
        self.cell = cell


class SlotUnavailableError(AutoAIError):
    """Every window slot is taken"""
    pass


class BridgeError(AutoAIError):
    """Browser bridge transport error"""
    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
