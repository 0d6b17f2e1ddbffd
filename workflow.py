#!/usr/bin/env python3
"""
WattWise Workflow - One-shot BOM Power & Thermal Analysis

Runs a BOM file through the complete analysis pipeline and prints the
resulting power budget.

Usage:
    # Analyze a BOM and print the budget
    python workflow.py --bom "Files/rack_bom.xlsx"

    # Use a different model and export the results
    python workflow.py --bom bom.csv --model openai/gpt-4o-mini --xlsx budget.xlsx --html budget.html

Pipeline Steps:
    1. BOM Parsing (pandas) - First sheet or CSV into header-keyed rows
    2. LLM Analysis (OpenRouter) - Batched power/thermal extraction with retry
    3. Aggregation - Family groups, category breakdown and project totals
    4. Export - Excel, CSV and HTML outputs
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from wattwise import __version__
from wattwise.errors import ConfigurationError
from wattwise.exporter import export_csv, export_excel, render_html_report
from wattwise.llm_extractor import LLMConfig, LLMExtractor
from wattwise.models import AnalysisStatus, BudgetReport
from wattwise.session import AnalysisSession


def print_report(report: BudgetReport):
    """Print the project summary and family groups."""
    summary = report.summary

    print(f"\n{'='*70}")
    print("POWER BUDGET")
    print(f"{'='*70}")
    print(f"  Operational Load: {summary.total_typical_kw:.2f} kW")
    print(f"  Provisioned Load: {summary.total_max_kw:.2f} kW")
    print(f"  Heat Load: {summary.total_btu:,.0f} BTU/hr")
    print(f"  Components: {summary.total_components}")
    if summary.highest_consumer is not None:
        top = summary.highest_consumer.record
        print(f"  Highest Consumer: {top.part_number or top.description} ({top.total_max_watts:,.0f} W max)")

    if summary.breakdown_by_category:
        print(f"\n  Max Power by Category:")
        for category in summary.breakdown_by_category:
            print(f"    - {category.name or 'Uncategorized'}: {category.value:,.0f} W")

    print(f"\n  Model Families:")
    for group in report.groups:
        print(f"\n    {group.model_family} [{group.category}] "
              f"- typical {group.total_typical_watts:,.0f} W, max {group.total_max_watts:,.0f} W, "
              f"{group.total_btu:,.0f} BTU/hr")
        for item in group.items:
            record = item.record
            flag = " (ignored)" if record.is_ignored else ""
            print(f"      #{item.original_index + 1} {record.part_number or record.description} "
                  f"x{record.quantity}: {record.typical_power_watts:g}/{record.max_power_watts:g} W "
                  f"[{record.max_source.value}, {record.confidence.value}]{flag}")


async def run_workflow(args) -> int:
    """Analyze one BOM file end to end. Returns the process exit code."""
    try:
        extractor = LLMExtractor(LLMConfig.from_env(model=args.model, max_retries=args.max_retries))
    except ConfigurationError as e:
        print(f"\nERROR: {e}")
        return 1

    async with extractor:
        session = AnalysisSession(extractor, ui_yield_delay=0)

        print(f"\n{'='*70}")
        print(f"WORKFLOW: Analyzing {args.bom.name}")
        print(f"{'='*70}")
        print(f"  Model: {extractor.model}")

        status = await session.analyze_file(args.bom)

        if status == AnalysisStatus.ERROR:
            print(f"\nERROR: {session.error_message}")
            return 1

        print_report(session.report)

        output_files = []
        if args.xlsx:
            output_files.append(export_excel(session.results, args.xlsx))
        if args.csv:
            output_files.append(export_csv(session.results, args.csv))
        if args.html:
            args.html.write_text(render_html_report(session.report), encoding="utf-8")
            output_files.append(args.html)

        if output_files:
            print(f"\n  Output Files: {len(output_files)}")
            for f in output_files:
                print(f"    - {f}")

        if session.metadata is not None:
            print(f"\n  Duration: {session.metadata.processing_time_seconds:.1f} seconds "
                  f"({session.metadata.batch_count} batch(es))")

    return 0


def main():
    """Main entry point for workflow."""
    parser = argparse.ArgumentParser(
        description="WattWise Workflow - BOM Power & Thermal Analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python workflow.py --bom Files/bom.xlsx                  # Print the budget
    python workflow.py --bom bom.csv --xlsx budget.xlsx      # Export to Excel
    python workflow.py --bom bom.xlsx --html report.html     # HTML report
        """
    )

    parser.add_argument("--bom", type=Path, required=True, help="BOM file (.xlsx, .xls or .csv)")
    parser.add_argument("--model", help="Model identifier (default: WATTWISE_MODEL or built-in)")
    parser.add_argument("--max-retries", type=int, default=None,
                        help="Retries per request after the first attempt (default: 3)")

    # Output options
    parser.add_argument("--xlsx", type=Path, help="Write the budget to an Excel file")
    parser.add_argument("--csv", type=Path, help="Write the budget to a CSV file")
    parser.add_argument("--html", type=Path, help="Write a standalone HTML report")
    parser.add_argument("--verbose", action="store_true", help="Show debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"""
    ╔══════════════════════════════════════════════════════════════════╗
    ║               WattWise Workflow v{__version__}                           ║
    ║         BOM Power & Thermal Budgeting                            ║
    ╚══════════════════════════════════════════════════════════════════╝
    """)

    if not args.bom.exists():
        print(f"Error: File not found: {args.bom}")
        return 1

    return asyncio.run(run_workflow(args))


if __name__ == "__main__":
    sys.exit(main())
