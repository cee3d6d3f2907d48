"""Markdown report builder"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from core.interfaces import ReportBuilder
from core.models import ReportRequest
from utils.clock import utcnow, format_local
from config import settings


logger = logging.getLogger(__name__)


class MarkdownReportBuilder(ReportBuilder):
    """Writes one markdown file per report under OUTPUT_DIR/reports and links to it"""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir else None

    def _target_dir(self) -> Path:
        if self.output_dir is None:
            return settings.get_output_path("reports")
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir

    async def build_report(self, request: ReportRequest) -> str:
        now = utcnow()
        file_path = self._target_dir() / f"report_{request.cell}_{now.strftime('%Y%m%d_%H%M%S')}.md"
        await asyncio.to_thread(self._write_markdown, request, file_path, format_local(now))
        logger.info(f"Report for {request.cell} written to {file_path}")
        return file_path.resolve().as_uri()

    def _write_markdown(self, request: ReportRequest, file_path: Path, generated: str):
        lines = [
            f"# Report {request.cell}",
            "",
            f"**AI:** {request.ai_type.display_name}",
            f"**Source:** {request.source_column}{request.row}",
            f"**Generated:** {generated}",
            "",
        ]
        if request.prompt:
            lines.extend(["## Prompt", "", request.prompt, ""])
        lines.extend(["## Answer", "", request.answer, ""])
        file_path.write_text("\n".join(lines), encoding="utf-8")
