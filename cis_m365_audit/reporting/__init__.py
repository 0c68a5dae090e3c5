"""Reporting package — console output and flat-file exports."""

from .console import ConsoleReporter
from .csv_export import export_csv
from .json_export import export_json

__all__ = [
    "ConsoleReporter",
    "export_csv",
    "export_json",
]
