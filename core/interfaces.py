"""Abstract base classes for AutoAI components"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .models import WindowBounds, WindowHandle, ScreenBounds, PromptResponse, ReportRequest

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class Stage(ABC, Generic[InputT, OutputT]):
    """Abstract base class for all pipeline stages"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable stage name"""
        pass

    @property
    @abstractmethod
    def stage_number(self) -> int:
        """Stage number (0-3)"""
        pass

    @abstractmethod
    async def execute(self, input_data: InputT) -> OutputT:
        """Execute the stage"""
        pass

    @abstractmethod
    def validate_input(self, input_data: InputT) -> bool:
        """Validate input before processing"""
        pass


class SheetsGateway(ABC):
    """Spreadsheet cell access"""

    @abstractmethod
    async def read_range(
        self, spreadsheet_id: str, a1_range: str, sheet_gid: Optional[str] = None
    ) -> list[list[str]]:
        """Read a rectangular range as rows of strings"""
        pass

    @abstractmethod
    async def write_cell(
        self, spreadsheet_id: str, a1_cell: str, value: str, sheet_gid: Optional[str] = None
    ) -> None:
        """Write one cell; raises PersistenceError on failure"""
        pass


class WindowGateway(ABC):
    """Browser window management"""

    @abstractmethod
    async def open_window(self, url: str, bounds: WindowBounds) -> WindowHandle:
        """Open a popup window at url; raises WindowCreationError"""
        pass

    @abstractmethod
    async def close_window(self, window_id: int) -> None:
        """Close a window"""
        pass

    @abstractmethod
    async def query_screen_bounds(self) -> ScreenBounds:
        """Primary display work area"""
        pass


class TabMessenger(ABC):
    """Prompt automation inside a hosted AI tab"""

    @abstractmethod
    async def is_ready(self, tab_id: int) -> bool:
        """Whether the tab's content script is ready"""
        pass

    @abstractmethod
    async def send_prompt(
        self,
        tab_id: int,
        prompt: str,
        timeout: float,
        model: Optional[str] = None,
        function: Optional[str] = None,
    ) -> PromptResponse:
        """Submit a prompt and wait for the textual answer"""
        pass


class AuthProvider(ABC):
    """Bearer token source"""

    @abstractmethod
    async def get_auth_token(self) -> str:
        """Current token, refreshed by the provider as needed"""
        pass


class ReportBuilder(ABC):
    """Turns an answer into a shareable report"""

    @abstractmethod
    async def build_report(self, request: ReportRequest) -> str:
        """Build a report and return its URL"""
        pass


@dataclass
class AutomationContext:
    """Collaborators handed to the stream scheduler"""
    sheets: SheetsGateway
    windows: Optional[WindowGateway] = None
    tabs: Optional[TabMessenger] = None
    reports: Optional[ReportBuilder] = None
    auth: Optional[AuthProvider] = None


