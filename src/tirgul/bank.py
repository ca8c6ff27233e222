import glob
import logging
import os
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List
from uuid import NAMESPACE_DNS, uuid5

import pandas as pd

from .matcher import AnswerMatcher
from .models import (
    AcceptableAnswer,
    Pool,
    Question,
    QuestionFormat,
    QuestionOption,
    QuestionType,
)
from .store import Store

logger = logging.getLogger(__name__)

MAX_OPTIONS = 6
REQUIRED_COLUMNS = {"type", "pool", "prompt_text"}

DEMO_QUESTIONS: List[Dict[str, Any]] = [
    {
        "type": "VERBAL_ANALOGY",
        "pool": "exam",
        "prompt_text": "חם : קר = יום : ?",
        "options": ["לילה", "שמש", "בוקר", "אור"],
        "correct_option": 1,
        "explanation": "הפכים.",
    },
    {
        "type": "VERBAL_ANALOGY",
        "pool": "practice",
        "prompt_text": "ספר : קורא = שיר : ?",
        "options": ["משורר", "שומע", "מנגינה", "דף"],
        "correct_option": 2,
        "explanation": "הפעולה על הדבר.",
    },
    {
        "type": "SHAPE_ANALOGY",
        "pool": "exam",
        "prompt_text": "Square : cube = circle : ?",
        "options": ["sphere", "cone", "ring", "oval"],
        "correct_option": 1,
        "explanation": "2D shape to its 3D counterpart.",
    },
    {
        "type": "SHAPE_ANALOGY",
        "pool": "practice",
        "prompt_text": "Triangle : 3 = hexagon : ?",
        "options": ["4", "5", "6", "8"],
        "correct_option": 3,
        "explanation": "Number of sides.",
    },
    {
        "type": "INSTRUCTIONS_DIRECTIONS",
        "pool": "exam",
        "prompt_text": "Face north, turn right twice. Which way do you face?",
        "options": ["North", "East", "South", "West"],
        "correct_option": 3,
        "explanation": "Two right turns reverse your direction.",
    },
    {
        "type": "INSTRUCTIONS_DIRECTIONS",
        "pool": "practice",
        "prompt_text": "Face east, turn left once. Which way do you face?",
        "options": ["North", "East", "South", "West"],
        "correct_option": 1,
        "explanation": "A left turn from east faces north.",
    },
    {
        "type": "QUANTITATIVE",
        "pool": "exam",
        "prompt_text": "7 × 8 = ?",
        "options": ["54", "56", "58", "64"],
        "correct_option": 2,
        "explanation": "7 × 8 = 56.",
    },
    {
        "type": "QUANTITATIVE",
        "pool": "practice",
        "format": "NUMERIC",
        "prompt_text": "15 ÷ 2 = ?",
        "acceptable_answer": "7.5",
        "tolerance": "0.01",
        "explanation": "15 ÷ 2 = 7.5.",
    },
]


# --- Service Layer: Question Bank ---
class QuestionBank:
    """Loads question content from CSV files into a store.

    One CSV row per question. Columns: ``type``, ``pool`` (``exam`` or
    ``practice``), ``prompt_text`` and optionally ``id``, ``format``,
    ``prompt_image_url``, ``explanation``, ``option_1`` .. ``option_6``,
    ``correct_option`` (1-based), ``acceptable_answer`` and ``tolerance``.
    """

    def __init__(self, directory: str, store: Store):
        self.directory = directory
        self.store = store
        self.matcher = AnswerMatcher()
        self.counts: Dict[str, int] = {}

    def load_all(self) -> int:
        self.counts = {}
        if not os.path.exists(self.directory):
            os.makedirs(self.directory)
            logger.warning(f"Created directory {self.directory}. Please add CSV files.")

        csv_files = glob.glob(os.path.join(self.directory, "*.csv"))
        for file_path in csv_files:
            file_name = os.path.splitext(os.path.basename(file_path))[0]
            try:
                df = pd.read_csv(file_path, encoding="utf-8", dtype=str, keep_default_na=False)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load {file_path}: {e}")
                continue
            missing = REQUIRED_COLUMNS - set(df.columns)
            if missing:
                logger.error(f"Skipping {file_name}: Missing columns {sorted(missing)}.")
                continue
            loaded = 0
            for index, row in enumerate(df.to_dict("records")):
                try:
                    self._save(row_to_question(row, f"{file_name}:{index}"))
                    loaded += 1
                except ValueError as e:
                    logger.error(f"Skipping {file_name} row {index}: {e}")
            logger.info(f"Loaded {loaded} questions from {file_name}")

        if not self.counts:
            logger.warning("No question files found. Loading demo questions.")
            for index, item in enumerate(DEMO_QUESTIONS):
                self._save(row_to_question(_flatten(item), f"demo:{index}"))

        return sum(self.counts.values())

    def get_counts(self) -> List[Dict[str, Any]]:
        counts = []
        for key, count in self.counts.items():
            qtype, pool = key.split("/")
            counts.append({"type": qtype, "pool": pool, "count": count})
        counts.sort(key=lambda x: (x["type"], x["pool"]))
        return counts

    def _save(self, question: Question) -> None:
        self.matcher.check_integrity(question)
        self.store.save_question(question)
        key = f"{question.type.value}/{question.pool.value}"
        self.counts[key] = self.counts.get(key, 0) + 1


def row_to_question(row: Dict[str, str], seed: str) -> Question:
    """Builds a question from one CSV row. Raises ValueError on bad data."""
    qtype = QuestionType(row["type"].strip())
    pool = Pool(row["pool"].strip().lower())
    question_id = row.get("id") or str(uuid5(NAMESPACE_DNS, seed))

    correct_raw = (row.get("correct_option") or "").strip()
    correct_index = int(correct_raw) if correct_raw else None
    options = []
    for n in range(1, MAX_OPTIONS + 1):
        text = (row.get(f"option_{n}") or "").strip()
        if not text:
            continue
        options.append(
            QuestionOption(
                id=str(uuid5(NAMESPACE_DNS, f"{question_id}:{n}")),
                text=text,
                option_order=n,
                is_correct=(n == correct_index),
            )
        )

    acceptable = []
    value = (row.get("acceptable_answer") or "").strip()
    if value:
        tolerance_raw = (row.get("tolerance") or "").strip()
        try:
            tolerance = Decimal(tolerance_raw) if tolerance_raw else None
        except InvalidOperation:
            raise ValueError(f"bad tolerance {tolerance_raw!r}")
        acceptable.append(AcceptableAnswer(value=value, numeric_tolerance=tolerance))

    format_raw = (row.get("format") or "").strip()
    if format_raw:
        qformat = QuestionFormat(format_raw)
    else:
        qformat = QuestionFormat.SINGLE_CHOICE if options else QuestionFormat.TEXT
    if not options and not acceptable:
        raise ValueError("question has neither options nor an acceptable answer")

    return Question(
        id=question_id,
        type=qtype,
        format=qformat,
        prompt_text=row.get("prompt_text") or None,
        prompt_image_url=row.get("prompt_image_url") or None,
        explanation=row.get("explanation") or None,
        is_exam_question=pool is Pool.EXAM,
        options=options,
        acceptable_answers=acceptable,
    )


def _flatten(item: Dict[str, Any]) -> Dict[str, str]:
    row = {k: str(v) for k, v in item.items() if k != "options"}
    for n, text in enumerate(item.get("options", []), start=1):
        row[f"option_{n}"] = text
    return row
