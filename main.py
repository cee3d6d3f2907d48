"""Main entry point for AutoAI"""

import asyncio
import argparse
import logging
from pathlib import Path

from core.models import SpreadsheetContext, StreamOptions
from orchestrator import Orchestrator, build_automation_context
from stages import StreamScheduler
from ui.progress import ConsoleProgress
from config import settings


def main():
    parser = argparse.ArgumentParser(
        description="AutoAI - Spreadsheet-driven AI prompt automation",
        epilog="Rows need a number in column A; header rows are found by their column A labels",
    )
    parser.add_argument("workbook", type=Path, help="Workbook path (.xlsx or .csv)")
    parser.add_argument(
        "--sheet",
        type=str,
        default=settings.SHEET_GID,
        help="Worksheet index or title (default: first sheet)"
    )
    parser.add_argument(
        "--test-mode",
        action="store_true",
        help="Simulate AI responses instead of driving browser tabs"
    )
    parser.add_argument(
        "--tab-id",
        type=int,
        default=None,
        help="Reuse an existing tab instead of opening windows"
    )
    parser.add_argument(
        "--max-windows",
        type=int,
        default=settings.MAX_CONCURRENT_WINDOWS,
        help="Concurrent window cap"
    )
    parser.add_argument(
        "--bridge-url",
        type=str,
        default=settings.BROWSER_BRIDGE_URL,
        help="Browser bridge endpoint"
    )
    parser.add_argument(
        "--plan-only",
        action="store_true",
        help="List the tasks that would run and exit"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.workbook.exists():
        print(f"Error: File not found: {args.workbook}")
        return 1

    options = StreamOptions(test_mode=args.test_mode, tab_id=args.tab_id)
    spreadsheet = SpreadsheetContext(spreadsheet_id=str(args.workbook), sheet_gid=args.sheet)
    context = build_automation_context(args.workbook, options, bridge_url=args.bridge_url)

    orchestrator = Orchestrator(
        progress=ConsoleProgress(),
        context=context,
        scheduler=StreamScheduler(context, max_concurrent_windows=args.max_windows),
    )

    try:
        if args.plan_only:
            ctx = asyncio.run(orchestrator.plan(spreadsheet, options))
            print(f"\n{len(ctx.tasks.tasks)} task(s):")
            for task in ctx.tasks.tasks:
                print(f"  {task.cell:<8} {task.task_type.value:<7} {task.ai_type.display_name:<8} {task.column_group}")
            for warning in ctx.structure.warnings:
                print(f"  ! {warning}")
            return 0

        ctx = asyncio.run(orchestrator.run(spreadsheet, options))

        result = ctx.stream
        print(f"\n✓ Stream {'stopped' if result.stopped else 'complete'}")
        print(f"  Outcomes: {len(result.outcomes)}")
        print(f"  Columns: {', '.join(result.processed_columns) or 'N/A'}")
        print(f"  Windows opened: {result.total_windows}")

        return 0 if result.success else 1

    except Exception as e:
        print(f"\n✗ Pipeline failed: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    exit(main())
