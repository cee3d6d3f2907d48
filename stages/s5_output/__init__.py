"""Result persistence and reports"""

from .result_writer import ResultWriter, FAILURE_PREFIX
from .report_builder import MarkdownReportBuilder
from .log_format import format_section, parse_sections, merge_log

__all__ = ["ResultWriter", "FAILURE_PREFIX", "MarkdownReportBuilder", "format_section", "parse_sections", "merge_log"]
