"""
Export of analysis results.

Spreadsheet exports are one denormalized row per record; the HTML report
embeds the summary and family groups of a BudgetReport. Both are
projections of the result set and its aggregation views; no totals are
computed here beyond per-row quantity multiplication.
"""

import html
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Sequence, Union

import pandas as pd

from .models import AnalysisRecord, BudgetReport, MetricSource


logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "Part Number",
    "Description",
    "Model Family",
    "Category",
    "Quantity",
    "Ignored",
    "Typical Unit (W)",
    "Typical Source",
    "Typical Citation",
    "Typical Total (W)",
    "Max Unit (W)",
    "Max Source",
    "Max Citation",
    "Max Total (W)",
    "Heat Unit (BTU/hr)",
    "Heat Source",
    "Heat Total (BTU/hr)",
    "Methodology",
    "Source URL",
    "Source Title",
    "Matched Model Snippet",
    "Confidence",
    "Notes",
]


def records_to_rows(records: Sequence[AnalysisRecord]) -> List[Dict[str, Any]]:
    """Flatten records into export rows. Ignored records report zero totals."""
    rows = []
    for r in records:
        factor = 0 if r.is_ignored else r.quantity
        rows.append({
            "Part Number": r.part_number,
            "Description": r.description,
            "Model Family": r.model_family,
            "Category": r.category,
            "Quantity": r.quantity,
            "Ignored": "Yes" if r.is_ignored else "No",
            "Typical Unit (W)": r.typical_power_watts,
            "Typical Source": r.typical_source.value,
            "Typical Citation": r.typical_power_citation or "",
            "Typical Total (W)": r.typical_power_watts * factor,
            "Max Unit (W)": r.max_power_watts,
            "Max Source": r.max_source.value,
            "Max Citation": r.max_power_citation or "",
            "Max Total (W)": r.max_power_watts * factor,
            "Heat Unit (BTU/hr)": r.heat_dissipation_btu,
            "Heat Source": r.heat_source.value,
            "Heat Total (BTU/hr)": r.heat_dissipation_btu * factor,
            "Methodology": r.methodology,
            "Source URL": r.trusted_source_url or "",
            "Source Title": r.source_title or "",
            "Matched Model Snippet": r.matched_model_snippet or "",
            "Confidence": r.confidence.value,
            "Notes": r.notes,
        })
    return rows


def records_to_dataframe(records: Sequence[AnalysisRecord]) -> pd.DataFrame:
    return pd.DataFrame(records_to_rows(records), columns=EXPORT_COLUMNS)


def export_excel(records: Sequence[AnalysisRecord], output: Union[str, Path, BinaryIO]):
    """Write the power budget worksheet to an .xlsx file or binary buffer."""
    if isinstance(output, str):
        output = Path(output)
    records_to_dataframe(records).to_excel(output, sheet_name="Power Budget", index=False)
    if isinstance(output, Path):
        logger.info("Excel export saved to: %s", output)
    return output


def export_csv(records: Sequence[AnalysisRecord], output_path: Union[str, Path]) -> Path:
    """Write the power budget rows to a CSV file."""
    output_path = Path(output_path)
    records_to_dataframe(records).to_csv(output_path, index=False, encoding="utf-8")
    logger.info("CSV export saved to: %s", output_path)
    return output_path


def _fmt(value: float, digits: int = 0) -> str:
    return f"{value:,.{digits}f}"


def _source_badge(source: MetricSource) -> str:
    color = "#10b981" if source == MetricSource.DATASHEET else "#f59e0b"
    return f'<span style="color: {color}; font-size: 11px;">{html.escape(source.value)}</span>'


def _item_row(original_index: int, record: AnalysisRecord) -> str:
    e = html.escape
    url = record.trusted_source_url
    part = e(record.part_number or record.description or f"Item {original_index + 1}")
    if url and record.max_source == MetricSource.DATASHEET:
        part = f'<a href="{e(url, quote=True)}" target="_blank" rel="noopener noreferrer">{part}</a>'
    style = ' style="opacity: 0.45; text-decoration: line-through;"' if record.is_ignored else ""
    return f'''
            <tr{style}>
                <td>{original_index + 1}</td>
                <td>{part}<div style="color: #6b7280; font-size: 12px;">{e(record.description)}</div></td>
                <td style="text-align: right;">{record.quantity}</td>
                <td style="text-align: right;">{_fmt(record.typical_power_watts)} {_source_badge(record.typical_source)}</td>
                <td style="text-align: right;">{_fmt(record.max_power_watts)} {_source_badge(record.max_source)}</td>
                <td style="text-align: right;">{_fmt(record.heat_dissipation_btu)} {_source_badge(record.heat_source)}</td>
                <td>{e(record.confidence.value)}</td>
                <td style="color: #6b7280; font-size: 12px;">{e(record.methodology)}</td>
            </tr>'''


def render_html_report(report: BudgetReport, title: str = "WattWise Power Budget Report") -> str:
    """Render a standalone HTML power budget report."""
    e = html.escape
    summary = report.summary

    categories_html = "".join(
        f'<li><strong>{e(c.name or "Uncategorized")}</strong>: {_fmt(c.value)} W</li>'
        for c in summary.breakdown_by_category
    )

    highest_html = ""
    if summary.highest_consumer is not None:
        top = summary.highest_consumer.record
        highest_html = (
            f'<p style="color: #374151;">Highest consumer: <strong>'
            f'{e(top.part_number or top.description)}</strong> '
            f'({_fmt(top.total_max_watts)} W max)</p>'
        )

    groups_html = ""
    for group in report.groups:
        rows_html = "".join(_item_row(item.original_index, item.record) for item in group.items)
        groups_html += f'''
        <section style="background: white; border-radius: 12px; padding: 24px; margin-bottom: 24px; box-shadow: 0 4px 6px rgba(0,0,0,0.05);">
            <h3 style="margin: 0 0 4px 0; color: #111827;">{e(group.model_family)}</h3>
            <p style="margin: 0 0 16px 0; color: #6b7280; font-size: 13px;">
                {e(group.category)} &middot; {group.active_count} active of {len(group.items)} item(s) &middot;
                Typical {_fmt(group.total_typical_watts)} W &middot; Max {_fmt(group.total_max_watts)} W &middot;
                Heat {_fmt(group.total_btu)} BTU/hr
            </p>
            <table style="width: 100%; border-collapse: collapse; font-size: 14px;">
                <thead>
                    <tr style="text-align: left; color: #6b7280;">
                        <th>#</th><th>Part</th><th style="text-align: right;">Qty</th>
                        <th style="text-align: right;">Typical (W)</th><th style="text-align: right;">Max (W)</th>
                        <th style="text-align: right;">Heat (BTU/hr)</th><th>Confidence</th><th>Methodology</th>
                    </tr>
                </thead>
                <tbody>{rows_html}
                </tbody>
            </table>
        </section>'''

    generated = datetime.now().strftime("%Y-%m-%d %H:%M")

    return f'''<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{e(title)}</title>
<style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f3f4f6; margin: 0; padding: 32px; }}
    .cards {{ display: grid; grid-template-columns: repeat(4, 1fr); gap: 16px; margin-bottom: 32px; }}
    .card {{ background: white; border-radius: 12px; padding: 20px; box-shadow: 0 4px 6px rgba(0,0,0,0.05); }}
    .card .label {{ color: #6b7280; font-size: 12px; text-transform: uppercase; letter-spacing: 1px; }}
    .card .value {{ color: #111827; font-size: 28px; font-weight: 700; margin-top: 8px; }}
    td, th {{ padding: 8px; border-bottom: 1px solid #e5e7eb; vertical-align: top; }}
</style>
</head>
<body>
    <h1 style="color: #111827;">{e(title)}</h1>
    <p style="color: #6b7280;">Generated {generated}. AI estimates are for reference only; verify against manufacturer specifications.</p>
    <div class="cards">
        <div class="card"><div class="label">Operational Load</div><div class="value">{_fmt(summary.total_typical_kw, 2)} kW</div></div>
        <div class="card"><div class="label">Provisioned Load</div><div class="value">{_fmt(summary.total_max_kw, 2)} kW</div></div>
        <div class="card"><div class="label">Heat Load</div><div class="value">{_fmt(summary.total_btu)} BTU/hr</div></div>
        <div class="card"><div class="label">Components</div><div class="value">{summary.total_components}</div></div>
    </div>
    {highest_html}
    <h2 style="color: #111827;">Max Power by Category</h2>
    <ul>{categories_html}</ul>
    <h2 style="color: #111827;">Model Families</h2>
    {groups_html}
</body>
</html>'''
