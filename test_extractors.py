import unittest
from datetime import datetime

from extractors import (
    extract_metadata,
    extract_task_table,
    find_header_row,
    resolve_columns,
    stage_for,
)
from grid import GridScanner


METADATA_ROWS = [
    ["Nome do Projeto:", "Portal RH", "Saving: R$ 50.000,00"],
    ["Fábrica: Interna", "Squad", "Alpha"],
    ["Descrição", "resumo", "Migração do portal"],
    ["AF: João Lima", "Dev", "Ana Costa"],
    ["Arquiteto", "Carlos"],
    ["Squad", "Beta"],
]

TASK_ROWS = [
    ["Projeto X"],
    ["TAREFA", "INICIO", "FIM", "FIM", "DIAS", "% CONCLUÍDO"],
    ["Discovery", "01/01/2024", "10/01/2024", "12/01/2024", 10, 1.0],
    ["Homologação QA Final", None, "31/01/2024", None, 5, 0.5],
    ["Kickoff", None, None, None, None, None],
    [None, None, "05/02/2024"],
    ["Delivery", "01/02/2024", "01/02/2024", None, 0, 0],
]


class TestMetadata(unittest.TestCase):
    def setUp(self):
        self.meta = extract_metadata(GridScanner(METADATA_ROWS))

    def test_label_in_cell_and_adjacent_value(self):
        self.assertEqual(self.meta.name, "Portal RH")
        self.assertEqual(self.meta.factory, "Interna")
        self.assertEqual(self.meta.architect, "Carlos")

    def test_saving_from_label_text(self):
        self.assertEqual(self.meta.saving, 50000.0)

    def test_abbreviations(self):
        self.assertEqual(self.meta.analyst, "João Lima")
        self.assertEqual(self.meta.developer, "Ana Costa")

    def test_first_match_wins(self):
        self.assertEqual(self.meta.squad, "Alpha")

    def test_description_cell_overrides_label(self):
        self.assertEqual(self.meta.description, "Migração do portal")

    def test_description_cell_outside_scan_is_ignored(self):
        meta = extract_metadata(GridScanner(METADATA_ROWS), max_rows=2)
        self.assertIsNone(meta.description)
        self.assertIsNone(meta.analyst)

    def test_delivery_is_not_developer(self):
        meta = extract_metadata(GridScanner([["Delivery", "Sprint 3"]]))
        self.assertIsNone(meta.developer)

    def test_label_and_value_in_one_cell_without_colon(self):
        meta = extract_metadata(GridScanner([["Squad Alpha"], ["Dev Ana Costa"]]))
        self.assertEqual(meta.squad, "Alpha")
        self.assertEqual(meta.developer, "Ana Costa")

    def test_table_cells_are_not_labels(self):
        grid = GridScanner([
            ["TAREFA", "INICIO", "FIM", "FIM", "DIAS", "PROGRESSO", None, "Squad", "Alpha"],
            ["Desenvolvimento API", "01/03/2024", "31/03/2024", None, 30, "100%", None, "Saving", "R$ 1.000,00"],
        ])
        meta = extract_metadata(grid, table_start=0, table_columns=frozenset(range(6)))
        self.assertEqual(meta.squad, "Alpha")
        self.assertEqual(meta.saving, 1000.0)
        self.assertIsNone(meta.developer)

    def test_empty_grid(self):
        meta = extract_metadata(GridScanner([]))
        self.assertIsNone(meta.name)
        self.assertIsNone(meta.saving)


class TestTaskTable(unittest.TestCase):
    def setUp(self):
        self.grid = GridScanner(TASK_ROWS)

    def test_header_row_and_columns(self):
        self.assertEqual(find_header_row(self.grid), 1)
        cols = resolve_columns(self.grid, 1)
        self.assertEqual(cols.task, 0)
        self.assertEqual(cols.start, 1)
        self.assertEqual(cols.planned_end, 2)
        self.assertEqual(cols.actual_end, 3)
        self.assertEqual(cols.duration, 4)
        self.assertEqual(cols.progress, 5)

    def test_single_fim_has_no_actual_end(self):
        grid = GridScanner([["ETAPA", "FIM"]])
        cols = resolve_columns(grid, 0)
        self.assertEqual(cols.planned_end, 1)
        self.assertIsNone(cols.actual_end)

    def test_rows_become_tasks(self):
        table = extract_task_table(self.grid)
        self.assertEqual([t.name for t in table.tasks],
                         ["Discovery", "Homologação QA Final", "Delivery"])

        discovery = table.tasks[0]
        self.assertEqual(discovery.start_date, datetime(2024, 1, 1))
        self.assertEqual(discovery.actual_end, datetime(2024, 1, 12))
        self.assertEqual(discovery.progress, 100.0)

    def test_missing_start_is_back_computed(self):
        table = extract_task_table(self.grid)
        self.assertEqual(table.tasks[1].start_date, datetime(2024, 1, 26))
        self.assertEqual(table.tasks[1].progress, 50.0)

    def test_stage_durations(self):
        table = extract_task_table(self.grid)
        self.assertEqual(table.stage_durations,
                         {"Discovery": 10, "Homologação": 5, "Delivery": 1})

    def test_no_header_means_no_table(self):
        self.assertIsNone(extract_task_table(GridScanner([["Feriado", "01/01/2024"]])))


class TestStageFor(unittest.TestCase):
    def test_first_keyword_decides(self):
        self.assertEqual(stage_for("Homologação QA Final"), "Homologação")
        self.assertEqual(stage_for("Desenvolvimento API"), "Desenvolvimento")
        self.assertEqual(stage_for("Mapeamento de processos"), "Discovery")
        self.assertEqual(stage_for("Rollout filiais"), "Implantação")
        self.assertIsNone(stage_for("Kickoff"))


if __name__ == '__main__':
    unittest.main()
