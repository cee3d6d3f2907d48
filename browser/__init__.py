"""Browser extension adapters"""

from .bridge import BrowserBridge, StaticTokenProvider

__all__ = ["BrowserBridge", "StaticTokenProvider"]
