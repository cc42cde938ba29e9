"""Assemble the LaTeX source of an exam from a normalized draft.

The builder walks the task list once and produces three node trees (exam
tasks, answer key, grading tables); ``ExamDocument.render`` wraps them in
the fixed preamble, header and footer.
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from exam_generator.models.exam import ExamDraft, ExamRequestParams, GradeBand, GradeScale, Task
from exam_generator.rendering.latex import (
    DEFAULT_GAP_WIDTH,
    Block,
    Enumerate,
    Node,
    Paragraph,
    Raw,
    Table,
    Text,
    escape_latex,
    gap,
)
from exam_generator.utils.normalizers import clean_title

DEFAULT_PERMITTED_AIDS = "Keine"
MISSING_SOLUTION = "Lösung folgt"
GRADE_COLUMN_SPEC = "|c|X|X|X|X|X|X|"

PREAMBLE = r"""\documentclass[a4paper,11pt]{article}
\usepackage[utf8]{inputenc}
\usepackage[ngerman]{babel}
\usepackage[T1]{fontenc}
\usepackage{lmodern, amsmath, amssymb, geometry, fancyhdr, graphicx, tabularx, lastpage, array, enumitem}
\geometry{a4paper, top=1.5cm, bottom=2.5cm, left=2.5cm, right=2.5cm, headheight=4cm}
\newcommand{\luecke}[1]{\underline{\hspace{#1}}}
\newcolumntype{Y}{>{\centering\arraybackslash}X}
\setlength{\parindent}{0pt}"""


@dataclass
class ExamHeader:
    """Values shown in the header block of both the exam and the answer key."""
    logo_markup: str
    subject: str
    grade_label: str
    topic_title: str
    date_label: str
    duration_label: str
    permitted_aids: str

    def render_macro(self) -> str:
        return "\n".join([
            r"\newcommand{\myHeader}[1]{",
            r"\noindent",
            rf"\makebox[0pt][l]{{\raisebox{{-0.97\height}}{{{self.logo_markup}}}}}%",
            r"\begin{center}",
            r"\parbox[t]{0.8\textwidth}{\centering \Huge \textbf{#1}} \\[0.3cm]",
            rf"\large im Fach \textbf{{{escape_latex(self.subject)}}} der {escape_latex(self.grade_label)}. Klasse \\[0.2cm]",
            rf"\parbox[t]{{0.8\textwidth}}{{\centering \normalsize Thema: \textbf{{{escape_latex(self.topic_title)}}}}}",
            r"\end{center}",
            r"\vspace{0.2cm}",
            r"\noindent",
            rf"\textbf{{Datum:}} {escape_latex(self.date_label)} \\",
            rf"\textbf{{Zeit:}} {escape_latex(self.duration_label)} \\",
            rf"\textbf{{Hilfsmittel:}} {escape_latex(self.permitted_aids)}",
            r"\vspace{0.5cm}",
            r"\hrule",
            r"\vspace{1.0cm}",
            "}",
        ])


@dataclass
class ExamDocument:
    """Intermediate form of one exam, serialized by ``render``."""
    exam_label: str
    header: ExamHeader
    tasks: Block
    grading: Node
    solutions: Block
    brand_name: str
    version: str
    gap_width: str = DEFAULT_GAP_WIDTH

    def render(self) -> str:
        brand = escape_latex(self.brand_name)
        return "\n".join([
            PREAMBLE,
            self.header.render_macro(),
            r"\pagestyle{fancy} \fancyhf{} \renewcommand{\headrulewidth}{0pt}",
            rf"\fancyfoot[L]{{\small {escape_latex(self.version)} | Seite \thepage\ von \pageref{{LastPage}}}}",
            rf"\fancyfoot[R]{{\small Viel Erfolg wünscht dir {brand}!}}",
            r"\begin{document}",
            rf"\vspace*{{-1.0cm}} \myHeader{{{escape_latex(self.exam_label)}}}",
            self.tasks.render(),
            r"\vfill",
            r"\noindent",
            r"\begin{minipage}{\textwidth}",
            r"\textbf{Bewertung:} \par \vspace{0.3cm} \renewcommand{\arraystretch}{1.5}",
            self.grading.render(),
            rf"\vspace{{1cm}} \hfill \Large \textbf{{Note: {gap(self.gap_width)}}}",
            r"\end{minipage}",
            r"\newpage \null \vspace*{-1.0cm}",
            r"\myHeader{Musterlösung}",
            self.solutions.render(),
            r"\end{document}",
            "",
        ])


def format_band(band: GradeBand) -> str:
    """'20 -- 17' from best to worst; an unreachable band is a lone dash."""
    if band.is_empty:
        return "--"
    return f"{band.upper} -- {band.lower}"


def _task_block(index: int, task: Task, gap_width: str) -> Block:
    block = Block()
    block.add(Raw(rf"\noindent \textbf{{Aufgabe {index}}} \hfill \small{{/ {task.points} BE}} \\"))
    if task.instruction.strip():
        block.add(Paragraph(Text(task.instruction, gap_width)))
    # One- or two-character bodies are model noise like "-" or "a)".
    if len(task.body.strip()) > 2:
        block.add(Paragraph(Text(task.body, gap_width)))
    if task.subtasks:
        block.add(Enumerate([Text(sub.body, gap_width) for sub in task.subtasks]))
    block.add(Raw(r"\vspace{1.0cm}"))
    return block


def _solution_block(index: int, task: Task, gap_width: str) -> Block:
    block = Block()
    block.add(Raw(rf"\noindent \textbf{{Zu Aufgabe {index}}} \\"))
    if len(task.solution.strip()) > 1:
        block.add(Raw(rf"{Text(task.solution, gap_width).render()} \par"))
    if task.subtasks and task.has_subtask_solutions:
        block.add(Enumerate([
            Text(sub.solution or MISSING_SOLUTION, gap_width) for sub in task.subtasks
        ]))
    block.add(Raw(r"\vspace{0.5cm}"))
    return block


def _grading_block(tasks: List[Task], scale: GradeScale) -> Block:
    column_spec = "|c|" + "X|" * max(len(tasks), 1) + "c|"
    numbers = [str(i) for i in range(1, len(tasks) + 1)]

    task_table = Table(column_spec)
    task_table.add_row([r"\textbf{Aufg.}", *numbers, r"\textbf{Gesamt}"])
    task_table.add_row(["Max.", *(str(task.points) for task in tasks), rf"\textbf{{{scale.total}}}"])
    task_table.add_row(["Err.", *("" for _ in tasks), ""])

    grade_table = Table(GRADE_COLUMN_SPEC)
    grade_table.add_row([r"\textbf{Note}", *(str(band.grade) for band in scale.bands)])
    grade_table.add_row(["Pkte", *(format_band(band) for band in scale.bands)])

    return Block([task_table, Raw(r"\vspace{0.8cm}"), grade_table])


def build_exam_document(
    draft: ExamDraft,
    params: ExamRequestParams,
    scale: GradeScale,
    *,
    brand_name: str,
    version: str,
    logo_filename: Optional[str] = None,
    gap_width: str = DEFAULT_GAP_WIDTH,
    exam_date: Optional[date] = None,
) -> ExamDocument:
    """Map a normalized draft and its grade scale onto an ExamDocument.

    Args:
        draft: Normalized exam draft (at least one task).
        params: Form fields of the request.
        scale: Grade scale computed from the effective total.
        brand_name: Branding text for the header and footer.
        version: Version string printed in the footer.
        logo_filename: Logo file name relative to the compile directory,
            or None to typeset the brand name instead.
        gap_width: Width of fill-in gaps.
        exam_date: Date printed in the header (today if omitted).

    Returns:
        ExamDocument ready to ``render()``.
    """
    policy = params.exam_kind.policy
    if logo_filename:
        logo_markup = rf"\includegraphics[width=3.5cm]{{{logo_filename}}}"
    else:
        logo_markup = rf"\textbf{{{escape_latex(brand_name)}}}"

    header = ExamHeader(
        logo_markup=logo_markup,
        subject=params.subject,
        grade_label=params.display_grade,
        topic_title=clean_title(draft.title or params.topic),
        date_label=(exam_date or date.today()).strftime("%d.%m.%Y"),
        duration_label=policy.duration_label,
        permitted_aids=draft.permitted_aids.strip() or DEFAULT_PERMITTED_AIDS,
    )

    tasks = Block()
    solutions = Block()
    for index, task in enumerate(draft.tasks, start=1):
        tasks.add(_task_block(index, task, gap_width))
        solutions.add(_solution_block(index, task, gap_width))

    return ExamDocument(
        exam_label=policy.label,
        header=header,
        tasks=tasks,
        grading=_grading_block(draft.tasks, scale),
        solutions=solutions,
        brand_name=brand_name,
        version=version,
        gap_width=gap_width,
    )
