"""Wrong-answer ledger: counts, mastery streak, review selection, persistence."""
import random

from conftest import make_question
from cbt.models import ExamMode
from cbt.wrong_answers import WrongAnswerTracker


def test_first_miss_creates_entry(tracker):
    q = make_question(7)
    entry = tracker.record_wrong(7, q, 3)

    assert entry.wrong_count == 1
    assert entry.correct_streak == 0
    assert entry.user_answer == 3
    assert tracker.get(7) is entry


def test_repeat_miss_increments_and_resets_streak(tracker):
    q = make_question(7)
    tracker.record_wrong(7, q, 3)
    tracker.record_correct(7, ExamMode.UNTIMED_RANDOM)
    entry = tracker.record_wrong(7, q, 4)

    assert entry.wrong_count == 2
    assert entry.correct_streak == 0
    assert entry.user_answer == 4


def test_correct_outside_review_builds_streak(tracker):
    tracker.record_wrong(7, make_question(7), 3)
    entry = tracker.record_correct(7, ExamMode.CATEGORY)

    assert entry is not None
    assert entry.correct_streak == 1
    assert tracker.get(7).correct_streak == 1


def test_third_correct_in_a_row_retires_entry(tracker):
    tracker.record_wrong(7, make_question(7), 3)
    tracker.record_correct(7, ExamMode.UNTIMED_RANDOM)
    tracker.record_correct(7, ExamMode.TIMED_RANDOM)
    assert tracker.get(7).correct_streak == 2

    assert tracker.record_correct(7, ExamMode.UNTIMED_RANDOM) is None
    assert tracker.get(7) is None


def test_correct_in_review_retires_immediately(tracker):
    tracker.record_wrong(7, make_question(7), 3)
    assert tracker.record_correct(7, ExamMode.REVIEW) is None
    assert len(tracker) == 0


def test_correct_for_unknown_question_is_noop(tracker):
    assert tracker.record_correct(99, ExamMode.UNTIMED_RANDOM) is None
    assert len(tracker) == 0


def test_stored_question_drops_image(tracker):
    q = make_question(7, image_url="https://example.com/diagram.png", has_image=True)
    entry = tracker.record_wrong(7, q, 3)
    assert entry.question.image_url is None
    assert entry.question.text == q.text


def test_review_list_capped_to_random_subset(tracker):
    for qid in range(1, 26):
        tracker.record_wrong(qid, make_question(qid), 1)

    picked = tracker.list_eligible_for_review(20, random.Random(3))

    assert len(picked) == 20
    assert len({e.question_id for e in picked}) == 20


def test_review_list_returns_all_under_cap(tracker):
    for qid in range(1, 6):
        tracker.record_wrong(qid, make_question(qid), 1)
    assert sorted(q.id for q in tracker.review_questions()) == [1, 2, 3, 4, 5]


def test_ledger_survives_restart(stores, tracker, clock):
    tracker.record_wrong(7, make_question(7), 3)
    tracker.record_wrong(8, make_question(8, "Machines"), 1)
    tracker.record_correct(8, ExamMode.UNTIMED_RANDOM)

    reloaded = WrongAnswerTracker(stores.wrong_answers, clock=clock)

    assert sorted(e.question_id for e in reloaded.entries()) == [7, 8]
    assert reloaded.get(8).correct_streak == 1
    assert reloaded.get(7).timestamp == clock()


def test_grouped_by_category_most_missed_first(tracker):
    tracker.record_wrong(1, make_question(1, "Theory"), 2)
    tracker.record_wrong(2, make_question(2, "Theory"), 2)
    tracker.record_wrong(2, make_question(2, "Theory"), 2)
    tracker.record_wrong(3, make_question(3, "Machines"), 2)

    groups = tracker.grouped_by_category()

    assert list(groups) == ["Machines", "Theory"]
    assert [e.question_id for e in groups["Theory"]] == [2, 1]


def test_clear_empties_ledger_and_store(stores, tracker):
    tracker.record_wrong(7, make_question(7), 3)
    tracker.clear()
    assert len(tracker) == 0
    assert stores.wrong_answers.get_all() == []
