"""
Record Export to Excel

Writes a record collection to a styled .xlsx workbook: one "Records" sheet
with the kind's list-view columns, and an optional "Summary" sheet holding
the completeness report with an enrichment-coverage chart.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import openpyxl
from openpyxl.chart import BarChart, Reference
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from catalog_inspector.core.schema_registry import SchemaRegistry, View, get_schema_registry
from catalog_inspector.core.value_extraction import has_data

logger = logging.getLogger(__name__)

HEADER_BG = "132E57"
HIGHLIGHT = "ED942D"
ALT_ROW_BG = "F2F2F2"
FONT_FAMILY = "Arial Narrow"
MAX_COLUMN_WIDTH = 50


@dataclass
class ExcelOutput:
    """Container for Excel output."""
    file_path: str
    sheet_count: int
    chart_count: int
    row_count: int


def cell_value(value: Any) -> Any:
    """Flatten a record value into something a spreadsheet cell can hold."""
    if not has_data(value):
        return ""
    if isinstance(value, list):
        return "; ".join(
            json.dumps(v, ensure_ascii=False, default=str) if isinstance(v, (dict, list)) else str(v)
            for v in value
        )
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, (bool, int, float)):
        return value
    return str(value)


class ExcelExporter:
    """Export record collections to styled Excel workbooks."""

    def __init__(self, output_dir: str = ".outputs", registry: Optional[SchemaRegistry] = None):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.registry = registry or get_schema_registry()
        self._setup_styles()

    def _setup_styles(self):
        """Create reusable styles."""
        self.header_fill = PatternFill(start_color=HEADER_BG, end_color=HEADER_BG, fill_type="solid")
        self.header_font = Font(name=FONT_FAMILY, size=12, bold=True, color="FFFFFF")
        self.section_fill = PatternFill(start_color=HIGHLIGHT, end_color=HIGHLIGHT, fill_type="solid")
        self.data_font = Font(name=FONT_FAMILY, size=11)
        self.data_font_bold = Font(name=FONT_FAMILY, size=11, bold=True)
        self.alt_row_fill = PatternFill(start_color=ALT_ROW_BG, end_color=ALT_ROW_BG, fill_type="solid")
        self.cell_border = Border(bottom=Side(style="thin", color="808080"))

    def _columns_for(self, entity_kind: str, records: List[Dict[str, Any]]) -> List[tuple]:
        """(key, header) pairs: id, then list-view fields, else the first record's keys."""
        specs = self.registry.get_fields_for_view(entity_kind, View.LIST)
        if not specs:
            return [(key, key) for key in records[0].keys()]
        id_field = self.registry.id_field_for(entity_kind)
        columns = [(spec.key, spec.label) for spec in specs]
        if id_field not in {key for key, _ in columns}:
            columns.insert(0, (id_field, id_field.upper() if id_field == "id" else id_field))
        return columns

    def _write_header(self, ws, row: int, headers: List[str]):
        for col_idx, header in enumerate(headers, 1):
            cell = ws.cell(row=row, column=col_idx, value=header)
            cell.font = self.header_font
            cell.fill = self.header_fill
            cell.border = self.cell_border
            cell.alignment = Alignment(horizontal="center")

    def _autofit(self, ws, widths: Dict[int, int]):
        for col_idx, width in widths.items():
            ws.column_dimensions[get_column_letter(col_idx)].width = min(width + 2, MAX_COLUMN_WIDTH)

    def export_records(
        self,
        entity_kind: str,
        records: List[Dict[str, Any]],
        summary: Any = None,
        filename: Optional[str] = None,
    ) -> ExcelOutput:
        """
        Write records (and optionally a CompletenessReport) to a workbook.

        Args:
            entity_kind: Kind of the records, used for column selection.
            records: Rows to export.
            summary: Optional CompletenessReport for the Summary sheet.
            filename: Output file name; defaults to <kind>_<timestamp>.xlsx.

        Returns:
            ExcelOutput with file path and metadata.
        """
        if not records:
            raise ValueError("No data to export")

        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Records"

        columns = self._columns_for(entity_kind, records)
        self._write_header(ws, 1, [header for _, header in columns])
        widths = {i: len(str(header)) for i, (_, header) in enumerate(columns, 1)}

        for row_idx, record in enumerate(records, 2):
            for col_idx, (key, _) in enumerate(columns, 1):
                value = cell_value(record.get(key))
                cell = ws.cell(row=row_idx, column=col_idx, value=value)
                cell.font = self.data_font
                if row_idx % 2 == 0:
                    cell.fill = self.alt_row_fill
                widths[col_idx] = max(widths[col_idx], len(str(value)))
        ws.freeze_panes = "A2"
        self._autofit(ws, widths)

        sheet_count, chart_count = 1, 0
        if summary is not None:
            chart_count = self._write_summary(wb.create_sheet("Summary"), summary)
            sheet_count += 1

        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"{entity_kind}_{timestamp}.xlsx"
        file_path = self.output_dir / filename
        wb.save(file_path)
        logger.info(f"Exported {len(records)} {entity_kind} record(s) to {file_path}")

        return ExcelOutput(
            file_path=str(file_path),
            sheet_count=sheet_count,
            chart_count=chart_count,
            row_count=len(records),
        )

    def _write_summary(self, ws, summary) -> int:
        """Summary metrics plus an enrichment-coverage table and chart."""
        title = ws.cell(row=1, column=1, value=f"{summary.entity_kind.title()} completeness")
        title.font = self.header_font
        title.fill = self.header_fill
        ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=3)
        ws.cell(row=2, column=1, value=f"Range: {summary.date_range.value}").font = self.data_font

        rows = [
            ("Total records", summary.total, None),
            ("With image", summary.with_image, summary.with_image_percent),
            ("Complete", summary.complete, summary.complete_percent),
            ("Enriched", summary.enriched, summary.enriched_percent),
        ]
        if summary.top_category:
            rows.append((f"Top category: {summary.top_category}", summary.top_category_count, None))

        self._write_header(ws, 4, ["Metric", "Count", "Percent"])
        for row_idx, (label, count, pct) in enumerate(rows, 5):
            ws.cell(row=row_idx, column=1, value=label).font = self.data_font_bold
            ws.cell(row=row_idx, column=2, value=count).font = self.data_font
            pct_cell = ws.cell(row=row_idx, column=3, value=pct / 100 if pct is not None else "")
            pct_cell.font = self.data_font
            if pct is not None:
                pct_cell.number_format = "0.0%"

        coverage = list(summary.enrichment_coverage.items())
        start = 5 + len(rows) + 2
        section = ws.cell(row=start, column=1, value="Enrichment coverage")
        section.font = self.data_font_bold
        section.fill = self.section_fill
        self._write_header(ws, start + 1, ["Field", "Coverage"])
        for offset, (key, pct) in enumerate(coverage, start + 2):
            ws.cell(row=offset, column=1, value=key).font = self.data_font
            cov = ws.cell(row=offset, column=2, value=pct / 100)
            cov.font = self.data_font
            cov.number_format = "0.0%"
        self._autofit(ws, {1: max([len(r[0]) for r in rows] + [len(k) for k, _ in coverage] + [20]), 2: 10, 3: 10})

        if not coverage:
            return 0
        chart = BarChart()
        chart.type = "bar"
        chart.title = "Enrichment coverage"
        chart.legend = None
        data = Reference(ws, min_col=2, min_row=start + 1, max_row=start + 1 + len(coverage))
        categories = Reference(ws, min_col=1, min_row=start + 2, max_row=start + 1 + len(coverage))
        chart.add_data(data, titles_from_data=True)
        chart.set_categories(categories)
        chart.series[0].graphicalProperties.solidFill = HIGHLIGHT
        ws.add_chart(chart, f"E{start}")
        return 1


def get_excel_exporter(output_dir: str = ".outputs") -> ExcelExporter:
    """Get Excel exporter instance."""
    return ExcelExporter(output_dir)
