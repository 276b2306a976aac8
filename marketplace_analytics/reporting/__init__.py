"""
Reporting Module
"""
from .csv_export import CsvColumn, escape_csv_field, export_to_csv
from .periods import build_funnel_report, calc_percent_change, period_boundaries
from .service import ReportingService

__all__ = [
    "CsvColumn",
    "ReportingService",
    "build_funnel_report",
    "calc_percent_change",
    "escape_csv_field",
    "export_to_csv",
    "period_boundaries",
]
