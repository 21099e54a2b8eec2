"""
PDF Export Module for the Project Portfolio Dashboard
Generates a portfolio summary report from parsed projects.
"""

from datetime import datetime

from fpdf import FPDF

from models import STATUS_DONE, STATUS_LATE


def _safe(text) -> str:
    """Sanitize text for fpdf2 Helvetica (latin-1 only)."""
    s = str(text) if text is not None else "-"
    s = s.replace("\u2014", "-")   # em dash
    s = s.replace("\u2013", "-")   # en dash
    s = s.replace("\u2018", "'")   # left single quote
    s = s.replace("\u2019", "'")   # right single quote
    s = s.replace("\u201c", '"')   # left double quote
    s = s.replace("\u201d", '"')   # right double quote
    s = s.replace("\u2022", "-")   # bullet
    s = s.replace("\u2026", "...")  # ellipsis
    s = s.replace("\u00a0", " ")   # non-breaking space
    return s.encode("latin-1", "replace").decode("latin-1")


def _fmt_currency(val) -> str:
    """Brazilian currency notation, e.g. R$ 1.234,56."""
    if val is None:
        return "-"
    try:
        val = float(val)
    except (ValueError, TypeError):
        return "-"
    sign = "-" if val < 0 else ""
    text = f"{abs(val):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {text}"


def _fmt_date(val) -> str:
    if val is None:
        return "-"
    if isinstance(val, datetime):
        return val.strftime("%d/%m/%Y")
    return _safe(val)


def _fmt_number(val) -> str:
    if val is None:
        return "-"
    try:
        return f"{int(round(float(val))):,}".replace(",", ".")
    except (ValueError, TypeError):
        return _safe(val)


class PortfolioPDFReport(FPDF):
    """Landscape A4 report with a fixed footer."""

    NAVY = (16, 6, 159)
    DARK = (12, 0, 51)
    WHITE = (255, 255, 255)
    RED = (211, 47, 47)
    GREEN = (46, 125, 50)
    LIGHT = (232, 232, 238)

    def __init__(self):
        super().__init__(orientation='L', unit='mm', format='A4')
        self.set_auto_page_break(auto=True, margin=15)
        self.add_page()

    def header(self):
        """Title bar is drawn once by the report body."""
        pass

    def footer(self):
        self.set_y(-15)
        self.set_font('Helvetica', 'I', 8)
        self.set_text_color(*self.NAVY)
        self.cell(0, 10, f'Portfolio de Projetos - pagina {self.page_no()}', 0, 0, 'C')

    def section_title(self, title: str):
        self.set_font('Helvetica', 'B', 12)
        self.set_text_color(*self.NAVY)
        self.cell(0, 8, _safe(title), 0, 1)
        self.set_draw_color(*self.NAVY)
        self.line(10, self.get_y(), 287, self.get_y())
        self.ln(3)

    def table_header(self, headers, widths):
        self.set_fill_color(*self.NAVY)
        self.set_text_color(*self.WHITE)
        self.set_font('Helvetica', 'B', 8)
        for header, width in zip(headers, widths):
            self.cell(width, 7, header, 1, 0, 'C', fill=True)
        self.ln()
        self.set_text_color(0, 0, 0)
        self.set_font('Helvetica', '', 7)


def generate_portfolio_pdf(
    projects: list,
    kpis: dict,
    stage_durations: list,
    source_files: list = None,
) -> bytes:
    """
    Build the portfolio PDF and return it as bytes.

    Args:
        projects: Projects to list in the register (already filtered)
        kpis: Output of ``analytics.calculate_kpis`` for the same projects
        stage_durations: Output of ``analytics.average_stage_durations``
        source_files: Names of the workbooks the data came from (optional)
    """
    pdf = PortfolioPDFReport()

    # ========== TITLE BAR ==========
    pdf.set_fill_color(*PortfolioPDFReport.DARK)
    pdf.set_text_color(*PortfolioPDFReport.WHITE)
    pdf.set_font('Helvetica', 'B', 16)
    pdf.cell(0, 12, '', 0, 1, fill=True)
    pdf.set_xy(10, 10)
    pdf.cell(80, 12, 'PORTFOLIO', 0, 0, 'L')
    pdf.set_font('Helvetica', 'B', 14)
    pdf.cell(117, 12, _safe('Relatório de Projetos'), 0, 0, 'C')
    pdf.set_font('Helvetica', '', 10)
    pdf.cell(80, 12, datetime.now().strftime("%d/%m/%Y %H:%M"), 0, 1, 'R')
    pdf.ln(5)

    # ========== KPI SUMMARY ==========
    pdf.section_title('Indicadores')

    late_count = kpis.get("status_distribution", {}).get(STATUS_LATE, 0)
    boxes = [
        ("Saving Total", _fmt_currency(kpis.get("total_saving", 0)), PortfolioPDFReport.GREEN),
        ("Projetos", _fmt_number(kpis.get("total_projects", 0)), None),
        ("Taxa de Conclusao", f"{kpis.get('completion_rate', 0):.1f}%", None),
        ("Atrasados", _fmt_number(late_count), PortfolioPDFReport.RED if late_count else None),
        ("Atraso Medio (dias)", _fmt_number(kpis.get("avg_delay_days", 0)), None),
    ]

    box_width = 54
    box_height = 20
    y_start = pdf.get_y()
    for i, (label, value, color) in enumerate(boxes):
        x = 10 + i * (box_width + 1.5)
        pdf.set_draw_color(*PortfolioPDFReport.NAVY)
        pdf.rect(x, y_start, box_width, box_height)

        pdf.set_xy(x + 2, y_start + 3)
        pdf.set_font('Helvetica', 'B', 9)
        pdf.set_text_color(80, 80, 80)
        pdf.cell(box_width - 4, 5, label, 0, 0)

        pdf.set_xy(x + 2, y_start + 10)
        pdf.set_font('Helvetica', 'B', 12)
        pdf.set_text_color(*(color or PortfolioPDFReport.NAVY))
        pdf.cell(box_width - 4, 8, value, 0, 0)

    pdf.set_y(y_start + box_height + 6)

    # ========== STATUS + STAGES ==========
    pdf.section_title('Status e Etapas')
    pdf.table_header(["Status", "Projetos"], [60, 25])
    for status, count in kpis.get("status_distribution", {}).items():
        pdf.cell(60, 6, _safe(status), 1, 0, 'L')
        pdf.cell(25, 6, _fmt_number(count), 1, 1, 'C')
    pdf.ln(3)

    if stage_durations:
        pdf.table_header(["Etapa", "Media (dias)"], [60, 25])
        for row in stage_durations:
            pdf.cell(60, 6, _safe(row["stage"]), 1, 0, 'L')
            pdf.cell(25, 6, _fmt_number(row["avg_days"]), 1, 1, 'C')
    pdf.ln(5)

    # ========== PROJECT REGISTER ==========
    if projects:
        pdf.add_page()
        pdf.section_title('Projetos')

        headers = ["Projeto", "Squad", "Fabrica", "Status", "Progresso", "Saving", "Inicio", "Baseline"]
        widths = [70, 30, 30, 28, 22, 40, 28, 28]
        pdf.table_header(headers, widths)

        for row_num, p in enumerate(projects):
            if pdf.get_y() > 180:
                pdf.add_page()
                pdf.table_header(headers, widths)

            fill = PortfolioPDFReport.WHITE if row_num % 2 == 0 else PortfolioPDFReport.LIGHT
            pdf.set_fill_color(*fill)

            pdf.cell(widths[0], 6, _safe(p.name)[:42], 1, 0, 'L', fill=True)
            pdf.cell(widths[1], 6, _safe(p.team.squad or "-")[:16], 1, 0, 'L', fill=True)
            pdf.cell(widths[2], 6, _safe(p.team.factory or "-")[:16], 1, 0, 'L', fill=True)

            if p.status == STATUS_LATE:
                pdf.set_text_color(*PortfolioPDFReport.RED)
            elif p.status == STATUS_DONE:
                pdf.set_text_color(*PortfolioPDFReport.GREEN)
            pdf.cell(widths[3], 6, _safe(p.status), 1, 0, 'C', fill=True)
            pdf.set_text_color(0, 0, 0)

            pdf.cell(widths[4], 6, f"{p.progress:.0f}%", 1, 0, 'C', fill=True)
            pdf.cell(widths[5], 6, _fmt_currency(p.saving), 1, 0, 'R', fill=True)
            pdf.cell(widths[6], 6, _fmt_date(p.start_date), 1, 0, 'C', fill=True)
            pdf.cell(widths[7], 6, _fmt_date(p.baseline_date), 1, 0, 'C', fill=True)
            pdf.ln()

    # ========== DATA SOURCES ==========
    if source_files:
        pdf.ln(5)
        pdf.set_font('Helvetica', 'B', 10)
        pdf.set_text_color(*PortfolioPDFReport.NAVY)
        pdf.cell(0, 6, 'Fontes:', 0, 1)
        pdf.set_font('Helvetica', '', 8)
        pdf.set_text_color(0, 0, 0)
        for fname in source_files:
            pdf.cell(0, 5, f'  - {_safe(fname)}', 0, 1)

    return bytes(pdf.output())
