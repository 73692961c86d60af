"""Detailed per-question results as CSV."""

from __future__ import annotations
import csv
import io
from typing import List

from .models import Question, ResultRow


def answer_status(question: Question, selected: int | None) -> str:
    if selected is None:
        return "NO ANSWER"
    return "Correct" if selected == question.correct_option_index else "Wrong"


def results_to_csv(questions: List[Question], results: List[ResultRow]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Name", "Branch", "Year", "Total Score"] + [f"Q{i + 1}: {q.text}" for i, q in enumerate(questions)])
    for r in results:
        row = [r.name, r.branch or "", r.year or "", r.score]
        row += [answer_status(q, r.answers.get(q.id)) for q in questions]
        writer.writerow(row)
    return buf.getvalue()
