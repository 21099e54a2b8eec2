"""Build small .xlsx workbooks in memory for the tests."""

import io

from openpyxl import Workbook


def build_workbook(sheets):
    """``{sheet_name: [row, ...]}`` → xlsx bytes, tabs in dict order."""
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(list(row))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def project_sheet(saving="Saving: R$ 100.000,00", rows=None, squad=None):
    """A minimal project tab: a metadata block then the task table."""
    header = [[saving]]
    if squad:
        header.append(["Squad", squad])
    table = [["TAREFA", "INICIO", "FIM", "DIAS", "PROGRESSO"]]
    if rows is None:
        rows = [["Desenvolvimento API", "01/03/2024", "31/03/2024", 30, "100%"]]
    return header + table + [list(r) for r in rows]
