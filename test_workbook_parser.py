import base64
import io
import os
import tempfile
import unittest
from datetime import datetime

from _workbook_builder import build_workbook, project_sheet
from extractors import SheetMetadata, TaskTable, ColumnRoles
from models import STATUS_DONE, STATUS_LATE
from workbook_parser import (
    WorkbookReadError,
    assemble_project,
    content_token,
    is_skipped_sheet,
    load_workbook,
    make_project_id,
    merge_projects,
    parse_file,
    parse_session,
)

TODAY = datetime(2024, 6, 1)


class TestEndToEnd(unittest.TestCase):
    def setUp(self):
        self.raw = build_workbook({"Portal": project_sheet()})

    def test_single_project_sheet(self):
        projects = parse_file(self.raw, filename="carteira.xlsx", today=TODAY)
        self.assertEqual(len(projects), 1)

        p = projects[0]
        self.assertEqual(p.name, "Portal")
        self.assertEqual(p.saving, 100000.0)
        self.assertEqual(p.status, STATUS_DONE)
        self.assertEqual(p.stage_durations, {"Desenvolvimento": 30})
        self.assertEqual(p.baseline_date, datetime(2024, 3, 31))
        self.assertEqual(p.start_date, datetime(2024, 3, 1))
        self.assertEqual(p.source_file, "carteira.xlsx")
        self.assertEqual(p.source_sheet, "Portal")

    def test_id_uses_file_sheet_and_content(self):
        p = parse_file(self.raw, filename="minha carteira.xlsx", today=TODAY)[0]
        self.assertEqual(p.id, f"minha_carteira.xlsx-Portal-{content_token(self.raw)}")

    def test_base64_and_path_sources(self):
        encoded = "data:application/octet-stream;base64," + base64.b64encode(self.raw).decode()
        from_b64 = parse_file(encoded, filename="a.xlsx", is_base64=True, today=TODAY)
        self.assertEqual(len(from_b64), 1)

        fd, path = tempfile.mkstemp(suffix=".xlsx")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(self.raw)
            from_path = parse_file(path, today=TODAY)
        finally:
            os.remove(path)
        self.assertEqual(from_path[0].source_file, os.path.basename(path))

    def test_late_project(self):
        raw = build_workbook({"Atrasado": project_sheet(
            rows=[["Desenvolvimento API", "01/03/2024", "31/03/2024", 30, "40%"]])})
        p = parse_file(raw, filename="x.xlsx", today=TODAY)[0]
        self.assertEqual(p.status, STATUS_LATE)
        self.assertIsNone(p.actual_date)


    def test_team_label_beside_table_header(self):
        raw = build_workbook({"Portal": [
            ["Saving: R$ 100.000,00"],
            ["TAREFA", "INICIO", "FIM", "FIM", "DIAS", "PROGRESSO", None, "Squad", "Alpha"],
            ["Desenvolvimento API", "01/03/2024", "31/03/2024", None, 30, "100%"],
        ]})
        p = parse_file(raw, filename="x.xlsx", today=TODAY)[0]
        self.assertEqual(p.team.squad, "Alpha")
        self.assertIsNone(p.team.developer)
        self.assertIsNone(p.description)

    def test_actual_date_from_finished_tasks(self):
        raw = build_workbook({"Portal": [
            ["Saving: R$ 100.000,00"],
            ["TAREFA", "INICIO", "FIM", "FIM", "DIAS", "PROGRESSO"],
            ["Discovery", "01/01/2024", "31/01/2024", "05/02/2024", 31, "100%"],
            ["Desenvolvimento", "01/02/2024", "28/02/2024", "10/03/2024", 28, "100%"],
            ["Homologação", "01/03/2024", "15/03/2024", "20/03/2024", 15, "98%"],
        ]})
        p = parse_file(raw, filename="x.xlsx", today=TODAY)[0]
        self.assertEqual(p.status, STATUS_DONE)
        self.assertEqual(p.baseline_date, datetime(2024, 3, 15))
        self.assertEqual(p.actual_date, datetime(2024, 3, 10))

    def test_progress_ignores_rows_without_planned_end(self):
        raw = build_workbook({"Portal": project_sheet(rows=[
            ["Desenvolvimento API", "01/03/2024", "31/03/2024", 30, "100%"],
            ["Kickoff", "01/02/2024", None, 5, "0%"],
        ])})
        p = parse_file(raw, filename="x.xlsx", today=TODAY)[0]
        self.assertEqual(len(p.tasks), 1)
        self.assertEqual(p.progress, 100.0)
        self.assertEqual(p.status, STATUS_DONE)


class TestSheetSelection(unittest.TestCase):
    def test_deny_listed_tabs_are_skipped(self):
        raw = build_workbook({
            "Feriados": project_sheet(),
            "Projeto A": project_sheet(),
            "Legenda": [["Cor", "Significado"]],
        })
        projects = parse_file(raw, filename="w.xlsx", today=TODAY)
        self.assertEqual([p.source_sheet for p in projects], ["Projeto A"])

    def test_load_workbook_keeps_tab_order(self):
        raw = build_workbook({"Zeta": [["a"]], "Alfa": [["b", 2]]})
        sheets = load_workbook(io.BytesIO(raw), filename="ordem.xlsx")
        self.assertEqual(list(sheets), ["Zeta", "Alfa"])
        self.assertEqual(sheets["Alfa"].cell(0, 1), 2)

    def test_is_skipped_sheet(self):
        self.assertTrue(is_skipped_sheet("Histórico 2023"))
        self.assertTrue(is_skipped_sheet("CONFIG"))
        self.assertFalse(is_skipped_sheet("Portal RH"))

    def test_sheet_without_schedule_or_saving_is_dropped(self):
        raw = build_workbook({"Notas": project_sheet(saving="Observações", rows=[["Kickoff", None, None, None, None]])})
        self.assertEqual(parse_file(raw, filename="n.xlsx", today=TODAY), [])

    def test_corrupt_file_raises(self):
        with self.assertRaises(WorkbookReadError) as ctx:
            parse_file(b"definitely not a workbook", filename="bad.xlsx")
        self.assertEqual(ctx.exception.filename, "bad.xlsx")


class TestAssembler(unittest.TestCase):
    def test_rejects_empty_sheet(self):
        table = TaskTable(header_row=0, columns=ColumnRoles(task=0))
        self.assertIsNone(assemble_project(SheetMetadata(), table, "id", "Aba", today=TODAY))

    def test_saving_alone_keeps_project(self):
        table = TaskTable(header_row=0, columns=ColumnRoles(task=0))
        p = assemble_project(SheetMetadata(saving=10.0), table, "id", "Aba", today=TODAY)
        self.assertIsNotNone(p)
        self.assertIsNone(p.baseline_date)

    def test_make_project_id_without_file(self):
        self.assertEqual(make_project_id("Aba 1"), "Aba 1")


class TestSession(unittest.TestCase):
    def setUp(self):
        self.good = build_workbook({"P1": project_sheet(), "P2": project_sheet(squad="Alpha")})

    def test_corrupt_file_does_not_sink_siblings(self):
        result = parse_session(
            [{"name": "good.xlsx", "data": self.good}, {"name": "bad.xlsx", "data": b"junk"}],
            is_base64=False, today=TODAY,
        )
        self.assertEqual(result["added"], 2)
        self.assertEqual([f["status"] for f in result["files"]], ["ok", "error"])
        self.assertEqual(result["errors"][0]["file"], "bad.xlsx")

    def test_reimport_is_idempotent(self):
        first = parse_session([{"name": "good.xlsx", "data": self.good}], is_base64=False, today=TODAY)
        second = parse_session([{"name": "good.xlsx", "data": self.good}], is_base64=False,
                               existing=first["projects"], today=TODAY)
        self.assertEqual(second["added"], 0)
        self.assertEqual(second["duplicates"], 2)
        self.assertEqual([p.to_dict() for p in second["projects"]],
                         [p.to_dict() for p in first["projects"]])

    def test_empty_file_is_reported(self):
        raw = build_workbook({"Capa": [["Bem-vindo"]]})
        result = parse_session([{"name": "capa.xlsx", "data": raw}], is_base64=False, today=TODAY)
        self.assertEqual(result["files"][0]["status"], "empty")
        self.assertEqual(result["projects"], [])

    def test_merge_first_seen_wins(self):
        a = parse_file(self.good, filename="g.xlsx", today=TODAY)
        merged, added, dup = merge_projects(a[:1], a)
        self.assertEqual((len(merged), added, dup), (2, 1, 1))
        self.assertIs(merged[0], a[0])


if __name__ == '__main__':
    unittest.main()
