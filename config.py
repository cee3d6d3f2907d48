"""Configuration and environment settings"""

import platform
from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Optional, Dict
from pathlib import Path


class Settings(BaseSettings):
    """Application configuration"""

    # Spreadsheet
    SHEET_GID: Optional[str] = None
    READ_RANGE: str = "A1:ZZ1000"

    # Structure analysis
    HEADER_SCAN_ROWS: int = 10
    MAX_PROMPT_COLUMNS: int = 5
    WORK_ROW_REQUIRE_NUMBER: bool = True  # Column A must hold a positive integer
    FUZZY_MATCH_THRESHOLD: int = 88

    # Stream scheduler
    MAX_CONCURRENT_WINDOWS: int = 4
    MAX_TASK_ERRORS: int = 3  # Consecutive errors before a cell is abandoned
    WINDOW_READY_POLL_INTERVAL: float = 1.0  # seconds
    WINDOW_READY_MAX_RETRIES: int = 60
    DEFAULT_SCREEN_WIDTH: int = 1920
    DEFAULT_SCREEN_HEIGHT: int = 1080
    TEST_MODE_DELAY_MIN: float = 1.0  # seconds
    TEST_MODE_DELAY_MAX: float = 3.0  # seconds
    WRITE_FAILURE_MARKER: bool = True

    # Exclusive control
    EXCLUSIVE_CONTROL_ENABLED: bool = True
    MARKER_PREFIX: str = "現在操作中です"
    WORKER_ID: str = Field(default_factory=platform.node)
    MARKER_UTC_OFFSET_HOURS: int = 9
    FEATURE_TIMEOUT_MINUTES: Dict[str, float] = {
        "Normal": 5,
        "Web Search": 8,
        "Canvas": 10,
        "Deep Research": 40,
        "Agent": 40,
        "default": 5,
    }

    # Browser bridge (extension-side HTTP endpoint)
    BROWSER_BRIDGE_URL: Optional[str] = None
    BROWSER_BRIDGE_TOKEN: Optional[str] = None
    BRIDGE_TIMEOUT: float = 30.0  # seconds, excludes prompt waits

    # Worker API
    WORKER_API_KEY: Optional[str] = None

    # Output
    OUTPUT_DIR: str = "./output"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def get_feature_timeouts(self) -> Dict[str, float]:
        """Get feature timeout table in seconds"""
        return {name: minutes * 60 for name, minutes in self.FEATURE_TIMEOUT_MINUTES.items()}

    def get_output_path(self, subdir: str = "") -> Path:
        """Get output directory path"""
        path = Path(self.OUTPUT_DIR) / subdir
        path.mkdir(parents=True, exist_ok=True)
        return path


settings = Settings()
