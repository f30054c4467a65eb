"""
Data model for the exam core: questions, exam configuration, live sessions,
wrong-answer ledger entries, results and the rolling statistics aggregate.

Every type round-trips through plain dicts (to_dict / from_dict), which is
what the key-value stores persist.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Tuple

from engine import (
    DEFAULT_WEIGHT,
    MASTERY_STREAK,
    OPTION_RANGE,
    OTHER_CATEGORY,
    RECENT_RESULTS_LIMIT,
    WEIGHTS,
)


def round_half_up(value: float, places: int = 0) -> Decimal:
    """Round like a calculator (0.5 goes up), not banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_time(value) -> datetime:
    """Accept ISO strings, datetimes, or epoch timestamps (seconds or milliseconds)."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y")
    return bool(value)


def _as_optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _as_optional_str(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value or None


# ============= Enums =============

class ExamMode(str, Enum):
    TIMED_RANDOM = "timedRandom"
    UNTIMED_RANDOM = "untimedRandom"
    CATEGORY = "category"
    REVIEW = "review"

    @classmethod
    def _missing_(cls, value):
        # Older saves used "random" and "wrong"
        legacy = {"random": cls.UNTIMED_RANDOM, "wrong": cls.REVIEW}
        return legacy.get(value)

    @property
    def is_random(self) -> bool:
        return self in (ExamMode.TIMED_RANDOM, ExamMode.UNTIMED_RANDOM)

    @property
    def has_time_budget(self) -> bool:
        """Random exams run against the clock and are submitted at zero; drills are untimed."""
        return self.is_random

    @property
    def resumable(self) -> bool:
        return self is not ExamMode.TIMED_RANDOM


class WeightMode(str, Enum):
    FILTER = "filter"
    RATIO = "ratio"


class TimePolicy(str, Enum):
    FIXED = "fixed"
    PER_UNANSWERED = "per_unanswered"


# ============= Question =============

@dataclass(frozen=True)
class Question:
    """Immutable catalog entry. `answer` is the correct option, 1-4."""

    id: int
    category: str
    text: str
    options: Tuple[str, str, str, str]
    answer: int
    explanation: str = ""
    image_url: Optional[str] = None
    has_image: bool = False
    weight: Optional[int] = None
    standard: Optional[str] = None
    detail_item: Optional[str] = None
    must_include: bool = False
    must_exclude: bool = False
    source: Optional[str] = None
    help_url: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "options", tuple(self.options))
        if not isinstance(self.id, int) or self.id <= 0:
            raise ValueError(f"Question id must be a positive integer, got {self.id!r}")
        if len(self.options) != 4:
            raise ValueError(f"Question {self.id} needs exactly 4 options, got {len(self.options)}")
        low, high = OPTION_RANGE
        if not low <= self.answer <= high:
            raise ValueError(f"Question {self.id} answer must be {low}-{high}, got {self.answer}")
        if self.weight is not None and self.weight not in WEIGHTS:
            raise ValueError(f"Question {self.id} weight must be 1-10, got {self.weight}")

    @property
    def bucket_weight(self) -> int:
        """Weight used for ratio buckets; unweighted questions sit in the default bucket."""
        return self.weight if self.weight is not None else DEFAULT_WEIGHT

    def is_correct(self, option: Optional[int]) -> bool:
        return option is not None and option == self.answer

    def without_image(self) -> "Question":
        if not self.image_url:
            return self
        return replace(self, image_url=None)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "category": self.category,
            "text": self.text,
            "options": list(self.options),
            "answer": self.answer,
            "explanation": self.explanation,
            "image_url": self.image_url,
            "has_image": self.has_image,
            "weight": self.weight,
            "standard": self.standard,
            "detail_item": self.detail_item,
            "must_include": self.must_include,
            "must_exclude": self.must_exclude,
            "source": self.source,
            "help_url": self.help_url,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Question":
        return cls(
            id=int(data["id"]),
            category=data.get("category") or OTHER_CATEGORY,
            text=data.get("text", ""),
            options=tuple(data["options"]),
            answer=int(data["answer"]),
            explanation=data.get("explanation") or "",
            image_url=data.get("image_url") or None,
            has_image=bool(data.get("has_image", False)),
            weight=_as_optional_int(data.get("weight")),
            standard=data.get("standard"),
            detail_item=data.get("detail_item"),
            must_include=bool(data.get("must_include", False)),
            must_exclude=bool(data.get("must_exclude", False)),
            source=data.get("source"),
            help_url=data.get("help_url"),
        )

    def to_row(self) -> Dict:
        """Row in the external sheet format (option1..option4, camelCase flags)."""
        return {
            "id": self.id,
            "category": self.category,
            "standard": self.standard or "",
            "detailItem": self.detail_item or "",
            "question": self.text,
            "option1": self.options[0],
            "option2": self.options[1],
            "option3": self.options[2],
            "option4": self.options[3],
            "answer": self.answer,
            "explanation": self.explanation,
            "imageUrl": self.image_url or "",
            "hasImage": self.has_image,
            "weight": self.weight if self.weight is not None else "",
            "mustInclude": self.must_include,
            "mustExclude": self.must_exclude,
            "source": self.source or "",
            "helpResourceUrl": self.help_url or "",
        }

    @classmethod
    def from_row(cls, row: Dict) -> "Question":
        return cls(
            id=int(row["id"]),
            category=(row.get("category") or "").strip() or OTHER_CATEGORY,
            text=row.get("question") or "",
            options=tuple(str(row.get(f"option{i}") or "") for i in range(1, 5)),
            answer=int(row["answer"]),
            explanation=row.get("explanation") or "",
            image_url=_as_optional_str(row.get("imageUrl")),
            has_image=_as_bool(row.get("hasImage", False)),
            weight=_as_optional_int(row.get("weight")),
            standard=_as_optional_str(row.get("standard")),
            detail_item=_as_optional_str(row.get("detailItem")),
            must_include=_as_bool(row.get("mustInclude", False)),
            must_exclude=_as_bool(row.get("mustExclude", False)),
            source=_as_optional_str(row.get("source")),
            help_url=_as_optional_str(row.get("helpResourceUrl")),
        )


# ============= Exam configuration =============

@dataclass
class ExamConfig:
    """
    Process-wide selection settings.

    Defaults: weighting disabled, every weight 1-10 selected, no ratios,
    filter mode. Ratios need not sum to 100; they are normalized per pool
    at selection time.
    """

    weighting_enabled: bool = False
    selected_weights: List[int] = field(default_factory=lambda: list(WEIGHTS))
    weight_ratios: Dict[int, float] = field(default_factory=dict)
    mode: WeightMode = WeightMode.FILTER

    def __post_init__(self):
        self.mode = WeightMode(self.mode)
        self.selected_weights = sorted({int(w) for w in self.selected_weights})
        self.weight_ratios = {int(w): float(r) for w, r in self.weight_ratios.items()}
        bad = [w for w in self.selected_weights if w not in WEIGHTS]
        bad += [w for w in self.weight_ratios if w not in WEIGHTS]
        if bad:
            raise ValueError(f"Weights must be 1-10, got {sorted(set(bad))}")
        negative = {w: r for w, r in self.weight_ratios.items() if r < 0}
        if negative:
            raise ValueError(f"Weight ratios must be >= 0, got {negative}")

    @property
    def uses_ratios(self) -> bool:
        return self.weighting_enabled and self.mode is WeightMode.RATIO

    @property
    def uses_filter(self) -> bool:
        return self.weighting_enabled and self.mode is WeightMode.FILTER

    def to_dict(self) -> Dict:
        return {
            "weighting_enabled": self.weighting_enabled,
            "selected_weights": list(self.selected_weights),
            "weight_ratios": {str(w): r for w, r in self.weight_ratios.items()},
            "mode": self.mode.value,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ExamConfig":
        defaults = cls()
        return cls(
            weighting_enabled=bool(data.get("weighting_enabled", defaults.weighting_enabled)),
            selected_weights=data.get("selected_weights", defaults.selected_weights),
            weight_ratios=data.get("weight_ratios") or {},
            mode=data.get("mode", defaults.mode),
        )


# ============= Exam session =============

@dataclass
class ExamSession:
    """
    Live state of one attempt. The question tuple is fixed at creation;
    answers map question id -> chosen option and only grow or overwrite.
    """

    questions: Tuple[Question, ...]
    mode: ExamMode
    start_time: datetime
    answers: Dict[int, int] = field(default_factory=dict)
    category: Optional[str] = None
    user_id: Optional[int] = None
    time_policy: TimePolicy = TimePolicy.FIXED

    def __post_init__(self):
        self.questions = tuple(self.questions)
        self.mode = ExamMode(self.mode)
        self.time_policy = TimePolicy(self.time_policy)

    @property
    def question_ids(self) -> List[int]:
        return [q.id for q in self.questions]

    @property
    def id_set(self) -> List[int]:
        """Sorted question ids; two sessions cover the same exam when these match."""
        return sorted(self.question_ids)

    def has_question(self, question_id: int) -> bool:
        return any(q.id == question_id for q in self.questions)

    @property
    def answered_count(self) -> int:
        return sum(1 for q in self.questions if q.id in self.answers)

    @property
    def unanswered_count(self) -> int:
        return len(self.questions) - self.answered_count

    def to_dict(self) -> Dict:
        return {
            "questions": [q.without_image().to_dict() for q in self.questions],
            "answers": {str(qid): option for qid, option in self.answers.items()},
            "start_time": self.start_time.isoformat(),
            "mode": self.mode.value,
            "category": self.category,
            "user_id": self.user_id,
            "time_policy": self.time_policy.value,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ExamSession":
        return cls(
            questions=tuple(Question.from_dict(q) for q in data["questions"]),
            mode=ExamMode(data["mode"]),
            start_time=parse_time(data["start_time"]),
            answers={int(qid): int(option) for qid, option in (data.get("answers") or {}).items()},
            category=data.get("category"),
            user_id=data.get("user_id"),
            time_policy=data.get("time_policy", TimePolicy.FIXED.value),
        )


@dataclass(frozen=True)
class SubmitCheck:
    """What the caller needs to decide whether to confirm a submission."""

    unanswered_count: int

    @property
    def should_warn(self) -> bool:
        return self.unanswered_count > 0


# ============= Wrong-answer ledger =============

@dataclass
class WrongAnswerEntry:
    question_id: int
    question: Question
    user_answer: int
    timestamp: datetime
    wrong_count: int = 1
    correct_streak: int = 0

    @property
    def mastered(self) -> bool:
        return self.correct_streak >= MASTERY_STREAK

    def to_dict(self) -> Dict:
        return {
            "question_id": self.question_id,
            "question": self.question.to_dict(),
            "user_answer": self.user_answer,
            "timestamp": self.timestamp.isoformat(),
            "wrong_count": self.wrong_count,
            "correct_streak": self.correct_streak,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "WrongAnswerEntry":
        return cls(
            question_id=int(data["question_id"]),
            question=Question.from_dict(data["question"]),
            user_answer=int(data["user_answer"]),
            timestamp=parse_time(data["timestamp"]),
            wrong_count=int(data.get("wrong_count", 1)),
            correct_streak=int(data.get("correct_streak", 0)),
        )


# ============= Results and statistics =============

@dataclass
class ExamResult:
    total: int
    correct: int
    wrong: int
    unanswered: int
    score: int
    percentage: float
    passed: bool
    mode: ExamMode
    timestamp: datetime
    wrong_questions: List[Question] = field(default_factory=list)
    category_breakdown: Dict[str, Dict[str, int]] = field(default_factory=dict)
    category: Optional[str] = None
    user_id: Optional[int] = None
    auto_submitted: bool = False

    def to_dict(self) -> Dict:
        return {
            "total": self.total,
            "correct": self.correct,
            "wrong": self.wrong,
            "unanswered": self.unanswered,
            "score": self.score,
            "percentage": self.percentage,
            "passed": self.passed,
            "mode": self.mode.value,
            "timestamp": self.timestamp.isoformat(),
            "wrong_questions": [q.without_image().to_dict() for q in self.wrong_questions],
            "category_breakdown": self.category_breakdown,
            "category": self.category,
            "user_id": self.user_id,
            "auto_submitted": self.auto_submitted,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ExamResult":
        return cls(
            total=int(data["total"]),
            correct=int(data["correct"]),
            wrong=int(data.get("wrong", 0)),
            unanswered=int(data.get("unanswered", 0)),
            score=int(data["score"]),
            percentage=float(data.get("percentage", data["score"])),
            passed=bool(data["passed"]),
            mode=ExamMode(data["mode"]),
            timestamp=parse_time(data["timestamp"]),
            wrong_questions=[Question.from_dict(q) for q in data.get("wrong_questions", [])],
            category_breakdown=data.get("category_breakdown") or {},
            category=data.get("category"),
            user_id=data.get("user_id"),
            auto_submitted=bool(data.get("auto_submitted", False)),
        )


@dataclass
class Statistics:
    """Rolling aggregate over every submitted exam."""

    total_exams: int = 0
    passed_exams: int = 0
    average_score: int = 0
    category_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    recent_results: List[ExamResult] = field(default_factory=list)

    def record(self, result: ExamResult) -> None:
        self.total_exams += 1
        if result.passed:
            self.passed_exams += 1
        running = (self.average_score * (self.total_exams - 1) + result.score) / self.total_exams
        self.average_score = int(round_half_up(running))

        for category, counts in result.category_breakdown.items():
            stats = self.category_stats.setdefault(category, {"correct": 0, "total": 0})
            stats["correct"] += counts.get("correct", 0)
            stats["total"] += counts.get("total", 0)

        self.recent_results.append(result)
        if len(self.recent_results) > RECENT_RESULTS_LIMIT:
            self.recent_results = self.recent_results[-RECENT_RESULTS_LIMIT:]

    def to_dict(self) -> Dict:
        return {
            "total_exams": self.total_exams,
            "passed_exams": self.passed_exams,
            "average_score": self.average_score,
            "category_stats": self.category_stats,
            "recent_results": [r.to_dict() for r in self.recent_results],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Statistics":
        return cls(
            total_exams=int(data.get("total_exams") or 0),
            passed_exams=int(data.get("passed_exams") or 0),
            average_score=int(data.get("average_score") or 0),
            category_stats=data.get("category_stats") or {},
            recent_results=[ExamResult.from_dict(r) for r in data.get("recent_results") or []],
        )
