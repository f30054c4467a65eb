"""
Wrong-Answer Tracker: per-question mistake ledger with a mastery streak.

A miss creates or refreshes an entry (wrong_count + 1, streak reset to 0).
A correct answer outside review mode bumps the streak and retires the entry
at MASTERY_STREAK; in review mode the first correct answer retires it.
Every mutation is written through to the store immediately.
"""
import logging
import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

from engine import MASTERY_STREAK, OTHER_CATEGORY, REVIEW_CAP
from cbt.models import ExamMode, Question, WrongAnswerEntry, utcnow
from cbt.storage import WrongAnswerStore

logger = logging.getLogger(__name__)


class WrongAnswerTracker:
    """In-memory ledger backed by a WrongAnswerStore; memory wins if a write fails."""

    def __init__(self, store: WrongAnswerStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utcnow
        self._entries: Dict[int, WrongAnswerEntry] = {e.question_id: e for e in store.get_all()}

    def get(self, question_id: int) -> Optional[WrongAnswerEntry]:
        return self._entries.get(question_id)

    def entries(self) -> List[WrongAnswerEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def _retire(self, question_id: int, reason: str) -> None:
        self._entries.pop(question_id, None)
        if not self.store.remove(question_id):
            logger.error(f"Could not persist removal of question {question_id}")
        logger.info(f"Question {question_id} removed from wrong answers ({reason})")

    def record_wrong(self, question_id: int, question: Question, chosen_option: int) -> WrongAnswerEntry:
        """
        Upsert the entry for a missed question.

        Args:
            question_id: Id of the missed question
            question: Copy kept on the entry so it survives catalog edits
            chosen_option: The incorrect option the user picked (1-4)

        Returns:
            The created or updated entry
        """
        existing = self._entries.get(question_id)
        entry = WrongAnswerEntry(
            question_id=question_id,
            question=question.without_image(),
            user_answer=chosen_option,
            timestamp=self.clock(),
            wrong_count=existing.wrong_count + 1 if existing else 1,
            correct_streak=0,
        )
        self._entries[question_id] = entry
        if not self.store.upsert(entry):
            logger.error(f"Could not persist wrong answer for question {question_id}")
        logger.debug(f"Wrong answer recorded: Q={question_id}, count={entry.wrong_count}")
        return entry

    def record_correct(self, question_id: int, mode: ExamMode) -> Optional[WrongAnswerEntry]:
        """
        Credit a correct answer. Returns the surviving entry, or None when the
        question is not (or no longer) in the ledger.
        """
        entry = self._entries.get(question_id)
        if entry is None:
            return None

        if ExamMode(mode) is ExamMode.REVIEW:
            self._retire(question_id, "answered correctly in review")
            return None

        entry.correct_streak += 1
        if entry.correct_streak >= MASTERY_STREAK:
            self._retire(question_id, f"{MASTERY_STREAK} correct in a row")
            return None

        if not self.store.upsert(entry):
            logger.error(f"Could not persist streak for question {question_id}")
        return entry

    def list_eligible_for_review(self, cap: int = REVIEW_CAP, rng=None) -> List[WrongAnswerEntry]:
        """Entries still short of mastery; a uniform random `cap` of them when there are more."""
        rng = rng or random
        eligible = [e for e in self._entries.values() if e.correct_streak < MASTERY_STREAK]
        if len(eligible) > cap:
            return rng.sample(eligible, cap)
        return eligible

    def review_questions(self, cap: int = REVIEW_CAP, rng=None) -> List[Question]:
        return [e.question for e in self.list_eligible_for_review(cap, rng)]

    def grouped_by_category(self) -> Dict[str, List[WrongAnswerEntry]]:
        """Entries per category, most-missed first."""
        groups: Dict[str, List[WrongAnswerEntry]] = {}
        for entry in self._entries.values():
            groups.setdefault(entry.question.category or OTHER_CATEGORY, []).append(entry)
        for items in groups.values():
            items.sort(key=lambda e: (-e.wrong_count, e.question_id))
        return dict(sorted(groups.items()))

    def clear(self) -> None:
        self._entries.clear()
        if not self.store.clear():
            logger.error("Could not persist clearing the wrong-answer ledger")
