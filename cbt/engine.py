"""
Exam Session State Machine: one attempt from start to submission.

Created -> InProgress -> Submitted. Resuming re-enters InProgress from the
saved session. Timing is always derived from the wall clock
(now - start_time), never from counting ticks; the only autonomous
transition is the forced submission of a timed exam at zero.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from engine import (
    DRILL_TOTAL,
    EXAM_DURATION_SECONDS,
    EXAM_TOTAL,
    OPTION_RANGE,
    OTHER_CATEGORY,
    PASS_SCORE,
    REVIEW_CAP,
    SECONDS_PER_UNANSWERED,
)
from cbt.errors import InvalidAnswerValue, NoActiveSession
from cbt.models import (
    ExamConfig,
    ExamMode,
    ExamResult,
    ExamSession,
    Question,
    SubmitCheck,
    TimePolicy,
    round_half_up,
    utcnow,
)
from cbt.selector import order_by_category, select_balanced, select_category_questions
from cbt.storage import ResultStore, SessionStore
from cbt.wrong_answers import WrongAnswerTracker

logger = logging.getLogger(__name__)


def grade(session: ExamSession, timestamp: datetime, auto: bool = False) -> ExamResult:
    """
    Score a session without side effects.

    score = round(correct / total * 100), passing at PASS_SCORE. In review
    mode unanswered questions are left out of the denominator entirely.
    """
    review = session.mode is ExamMode.REVIEW
    correct = wrong = unanswered = 0
    wrong_questions: List[Question] = []
    breakdown: Dict[str, Dict[str, int]] = {}

    for q in session.questions:
        option = session.answers.get(q.id)
        if option is None:
            unanswered += 1
            if review:
                continue
        elif q.is_correct(option):
            correct += 1
        else:
            wrong += 1
            wrong_questions.append(q)

        stats = breakdown.setdefault(q.category or OTHER_CATEGORY, {"total": 0, "correct": 0})
        stats["total"] += 1
        if q.is_correct(option):
            stats["correct"] += 1

    total = correct + wrong if review else len(session.questions)
    percentage = correct / total * 100 if total else 0.0
    score = int(round_half_up(percentage))

    return ExamResult(
        total=total,
        correct=correct,
        wrong=wrong,
        unanswered=unanswered,
        score=score,
        percentage=float(round_half_up(percentage, 1)),
        passed=score >= PASS_SCORE,
        mode=session.mode,
        timestamp=timestamp,
        wrong_questions=wrong_questions,
        category_breakdown=breakdown,
        category=session.category,
        user_id=session.user_id,
        auto_submitted=auto,
    )


def is_resumable(
    saved: Optional[ExamSession],
    questions: Sequence[Question],
    mode: ExamMode,
    category: Optional[str] = None,
    user_id: Optional[int] = None,
) -> bool:
    """A saved session resumes only for the same mode, owner and exact question-id set."""
    mode = ExamMode(mode)
    if saved is None or not saved.questions or not mode.resumable:
        return False
    if saved.mode is not mode or saved.category != category:
        return False
    if user_id is not None and saved.user_id is not None and saved.user_id != user_id:
        return False
    return saved.id_set == sorted(q.id for q in questions)


def questions_for_mode(
    mode: ExamMode,
    catalog: Sequence[Question],
    config: Optional[ExamConfig] = None,
    tracker: Optional[WrongAnswerTracker] = None,
    category: Optional[str] = None,
    rng=None,
) -> List[Question]:
    """
    Pick the question list a new session of `mode` starts with.

    Random exams: EXAM_TOTAL balanced questions in category blocks.
    Category drill: DRILL_TOTAL from `category`.
    Review: up to REVIEW_CAP ledger entries still short of mastery.
    A short list means the pool ran out; the caller decides whether to warn.
    """
    mode = ExamMode(mode)
    if mode.is_random:
        return order_by_category(select_balanced(catalog, EXAM_TOTAL, config, rng))
    if mode is ExamMode.CATEGORY:
        if not category:
            raise ValueError("Category mode needs a category")
        return select_category_questions(catalog, category, DRILL_TOTAL, config, rng)
    if tracker is None:
        raise ValueError("Review mode needs a wrong-answer tracker")
    return tracker.review_questions(REVIEW_CAP, rng)


class ExamEngine:
    """Owns the current session, writes every change through to the session store."""

    def __init__(
        self,
        sessions: SessionStore,
        tracker: WrongAnswerTracker,
        results: ResultStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.sessions = sessions
        self.tracker = tracker
        self.results = results
        self.clock = clock or utcnow
        self._session: Optional[ExamSession] = None

    @property
    def current(self) -> Optional[ExamSession]:
        return self._session

    def _require(self) -> ExamSession:
        if self._session is None:
            raise NoActiveSession("No exam session in progress")
        return self._session

    def _persist(self) -> None:
        if not self.sessions.save_current(self._session):
            logger.warning("Session kept in memory only; progress will not survive a restart")

    def saved_session(self) -> Optional[ExamSession]:
        """The persisted session, if any, without making it current."""
        return self.sessions.get_current()

    # ============= Lifecycle =============

    def start(
        self,
        questions: Sequence[Question],
        mode: ExamMode,
        category: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> ExamSession:
        """Begin a fresh attempt, discarding any current or saved session."""
        mode = ExamMode(mode)
        if self._session is not None:
            logger.info(f"Discarding unfinished {self._session.mode.value} session")
        policy = TimePolicy.PER_UNANSWERED if mode is ExamMode.UNTIMED_RANDOM else TimePolicy.FIXED
        self._session = ExamSession(
            questions=tuple(questions),
            mode=mode,
            start_time=self.clock(),
            category=category,
            user_id=user_id,
            time_policy=policy,
        )
        self._persist()
        logger.info(f"Started {mode.value} session with {len(self._session.questions)} questions")
        return self._session

    def resume(
        self,
        questions: Sequence[Question],
        mode: ExamMode,
        category: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Optional[ExamSession]:
        """
        Restore the saved session when it covers exactly `questions`.

        A session with no answers gets a fresh start time; otherwise the
        original start time is kept and the per-unanswered budget applies
        again, even if the time was reset before exiting. Saved questions
        carry no images, so the passed catalog copies replace them (saved
        order kept).

        Returns:
            The resumed session, or None when the saved one is not eligible
        """
        saved = self.sessions.get_current()
        if not is_resumable(saved, questions, mode, category, user_id):
            return None
        by_id = {q.id: q for q in questions}
        saved.questions = tuple(by_id[q.id] for q in saved.questions)
        if saved.answered_count == 0:
            saved.start_time = self.clock()
        elif saved.mode is ExamMode.UNTIMED_RANDOM:
            saved.time_policy = TimePolicy.PER_UNANSWERED
        self._session = saved
        self._persist()
        logger.info(f"Resumed {saved.mode.value} session: {saved.answered_count}/{len(saved.questions)} answered")
        return saved

    def start_or_resume(
        self,
        questions: Sequence[Question],
        mode: ExamMode,
        category: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> ExamSession:
        return self.resume(questions, mode, category, user_id) or self.start(questions, mode, category, user_id)

    def answer(self, question_id: int, option: int) -> None:
        """Record (or overwrite) the chosen option for one question."""
        session = self._require()
        low, high = OPTION_RANGE
        if isinstance(option, bool) or not isinstance(option, int) or not low <= option <= high:
            raise InvalidAnswerValue(f"Option must be {low}-{high}, got {option!r}")
        if not session.has_question(question_id):
            raise InvalidAnswerValue(f"Question {question_id} is not part of this exam")
        session.answers[question_id] = option
        self._persist()

    def exit(self) -> Optional[ExamSession]:
        """Save and step away; the session stays resumable."""
        session = self._session
        if session is None:
            return None
        self._persist()
        self._session = None
        logger.info(f"Saved and exited {session.mode.value} session")
        return session

    def clear(self) -> None:
        self._session = None
        if not self.sessions.clear_current():
            logger.warning("Saved session could not be cleared")

    # ============= Timing =============

    def elapsed_seconds(self) -> int:
        session = self._require()
        return max(0, int((self.clock() - session.start_time).total_seconds()))

    def remaining_seconds(self) -> Optional[int]:
        """
        Seconds left on the budget, or None for untimed drills.

        Fixed policy (and any session with no answers yet): 60 minutes from
        start. Per-unanswered policy: one minute per unanswered question,
        still counted from the original start.
        """
        session = self._require()
        if not session.mode.has_time_budget:
            return None
        if session.time_policy is TimePolicy.PER_UNANSWERED and session.answered_count > 0:
            budget = session.unanswered_count * SECONDS_PER_UNANSWERED
        else:
            budget = EXAM_DURATION_SECONDS
        return max(0, budget - self.elapsed_seconds())

    def tick(self) -> Optional[ExamResult]:
        """One-second timer tick. Returns the result only when time ran out and forced submission."""
        if self._session is None or not self._session.mode.has_time_budget:
            return None
        if self.remaining_seconds() > 0:
            return None
        logger.info("Time is up, submitting automatically")
        return self.submit(auto=True)

    def reset_time(self) -> None:
        """Re-anchor the clock to now and restore the full fixed budget."""
        session = self._require()
        session.start_time = self.clock()
        session.time_policy = TimePolicy.FIXED
        self._persist()
        logger.info("Exam time reset to the full budget")

    # ============= Scoring =============

    def would_warn_on_submit(self) -> SubmitCheck:
        return SubmitCheck(unanswered_count=self._require().unanswered_count)

    def score(self) -> ExamResult:
        """Score so far. Read-only: the ledger, statistics and session are untouched."""
        return grade(self._require(), self.clock())

    def submit(self, auto: bool = False) -> ExamResult:
        """
        Grade the session, update the wrong-answer ledger and statistics,
        then clear the session. Unanswered questions never touch the ledger.
        """
        session = self._require()
        result = grade(session, self.clock(), auto)

        for q in session.questions:
            option = session.answers.get(q.id)
            if option is None:
                continue
            if q.is_correct(option):
                self.tracker.record_correct(q.id, session.mode)
            else:
                self.tracker.record_wrong(q.id, q, option)

        if not self.results.append_result(result):
            logger.error("Exam result was not saved")
        if not self.results.update_aggregate(result):
            logger.error("Statistics were not updated")

        self.clear()
        logger.info(
            f"Session completed: Score={result.score} ({result.correct}/{result.total}), "
            f"Pass={result.passed}, Auto={auto}"
        )
        return result

    def summary(self) -> Dict:
        """Real-time summary for display during the exam."""
        session = self._require()
        return {
            "mode": session.mode.value,
            "category": session.category,
            "total_questions": len(session.questions),
            "questions_answered": session.answered_count,
            "questions_unanswered": session.unanswered_count,
            "time_elapsed_sec": self.elapsed_seconds(),
            "time_remaining_sec": self.remaining_seconds(),
        }
