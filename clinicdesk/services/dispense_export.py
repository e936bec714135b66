from __future__ import annotations

import csv
import io
from typing import Iterable, List

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from clinicdesk.schemas.dispense import DispenseRow

BOM = "\ufeff"

HEADERS = [
    "Dispensed At",
    "Medicine",
    "Quantity",
    "Unit Price",
    "Total Price",
    "Patient Name",
    "Patient Number",
    "Dispensed By",
    "Dispensed By Role",
    "Invoice ID",
]


def _line(r: DispenseRow) -> List:
    by = r.dispensed_by
    return [
        r.dispensed_at.isoformat(sep=" ", timespec="seconds")
        if r.dispensed_at else "",
        r.medicine_name,
        r.quantity,
        r.unit_price,
        r.total_price,
        r.patient_name,
        r.patient_number or "",
        by.name if by else "",
        (by.role or "") if by else "",
        r.invoice_id,
    ]


def build_dispense_csv(rows: Iterable[DispenseRow]) -> str:
    """CSV text with a leading BOM so Excel picks up UTF-8."""
    buf = io.StringIO()
    buf.write(BOM)
    w = csv.writer(buf, lineterminator="\r\n")
    w.writerow(HEADERS)
    for r in rows:
        w.writerow(_line(r))
    return buf.getvalue()


def build_dispense_excel(fp, rows: Iterable[DispenseRow]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Dispenses"

    ws.append(HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for r in rows:
        line = _line(r)
        # keep a real datetime cell in the sheet
        line[0] = r.dispensed_at
        ws.append(line)

    widths = [20, 32, 10, 12, 12, 24, 16, 22, 18, 38]
    for col, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(col)].width = width
    ws.freeze_panes = "A2"

    wb.save(fp)
