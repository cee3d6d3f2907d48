"""Log cell sections, one per AI"""

import re
from typing import Dict, Optional

from core.enums import AIType, THREE_TYPE_ORDER
from core.models import LogEntry
from utils.clock import format_local


HEADER_RE = re.compile(r"^-{10} (.+?) -{10}$")
SECTION_ORDER = [ai_type.display_name for ai_type in THREE_TYPE_ORDER]


def format_section(entry: LogEntry, offset_hours: Optional[int] = None) -> str:
    elapsed = max(0, int((entry.written_at - entry.sent_at).total_seconds()))
    return "\n".join([
        f"---------- {entry.ai_type.display_name} ----------",
        f"Model: {entry.model}",
        f"Function: {entry.function}",
        f"URL: {entry.url}",
        f"Sent: {format_local(entry.sent_at, offset_hours)}",
        f"Written: {format_local(entry.written_at, offset_hours)} ({elapsed} sec later)",
    ])


def parse_sections(text: Optional[str]) -> Dict[str, str]:
    """Section text by AI name; anything outside a section is dropped"""
    sections: Dict[str, str] = {}
    current = None
    lines = []
    for line in (text or "").splitlines():
        match = HEADER_RE.match(line.strip())
        if match:
            if current:
                sections[current] = "\n".join(lines).strip()
            current = match.group(1)
            lines = [line.strip()]
        elif current:
            lines.append(line)
    if current:
        sections[current] = "\n".join(lines).strip()
    return sections


def merge_log(existing: Optional[str], entry: LogEntry, offset_hours: Optional[int] = None) -> str:
    """Replace this AI's section and re-render ChatGPT, Claude, Gemini first"""
    sections = parse_sections(existing)
    sections[entry.ai_type.display_name] = format_section(entry, offset_hours)

    names = [name for name in SECTION_ORDER if name in sections]
    names += [name for name in sections if name not in SECTION_ORDER]
    return "\n\n".join(sections[name] for name in names)
