"""Export helpers for commission data."""

from commission_desk.exporting.xlsx import export_commission_workbook

__all__ = ["export_commission_workbook"]
