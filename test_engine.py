"""Exam session state machine: timing, resume, answering, scoring."""
from datetime import timezone

import pytest

from conftest import make_catalog, make_question, wrong_option
from cbt.engine import ExamEngine, grade, is_resumable, questions_for_mode
from cbt.errors import InvalidAnswerValue, NoActiveSession
from cbt.models import ExamMode, ExamSession, TimePolicy
from cbt.wrong_answers import WrongAnswerTracker


def _reopen(stores, clock):
    tracker = WrongAnswerTracker(stores.wrong_answers, clock=clock)
    return ExamEngine(stores.sessions, tracker, stores.results, clock=clock)


# ============= Timing =============

def test_untimed_random_starts_with_full_hour(engine, clock):
    engine.start(make_catalog(per_category=2), ExamMode.UNTIMED_RANDOM)
    assert engine.remaining_seconds() == 3600
    clock.advance(600)
    assert engine.remaining_seconds() == 3000


def test_untimed_random_budget_follows_unanswered_count(engine, clock):
    questions = [make_question(i) for i in range(1, 11)]
    session = engine.start(questions, ExamMode.UNTIMED_RANDOM)
    assert session.time_policy is TimePolicy.PER_UNANSWERED

    clock.advance(100)
    for q in questions[:4]:
        engine.answer(q.id, q.answer)

    assert engine.remaining_seconds() == 6 * 60 - 100


def test_timed_random_budget_ignores_answers(engine, clock):
    questions = [make_question(i) for i in range(1, 11)]
    engine.start(questions, ExamMode.TIMED_RANDOM)
    engine.answer(1, 2)
    clock.advance(1200)
    assert engine.remaining_seconds() == 2400


def test_remaining_never_negative(engine, clock):
    engine.start([make_question(1)], ExamMode.UNTIMED_RANDOM)
    clock.advance(7200)
    assert engine.remaining_seconds() == 0


def test_drills_have_no_time_budget(engine):
    engine.start([make_question(1)], ExamMode.CATEGORY, category="Theory")
    assert engine.remaining_seconds() is None
    assert engine.tick() is None


def test_tick_auto_submits_timed_exam_at_zero(engine, clock):
    engine.start([make_question(1), make_question(2)], ExamMode.TIMED_RANDOM)
    engine.answer(1, make_question(1).answer)

    clock.advance(3599)
    assert engine.tick() is None

    clock.advance(1)
    result = engine.tick()
    assert result is not None
    assert result.auto_submitted
    assert result.correct == 1
    assert result.unanswered == 1
    assert engine.current is None
    assert engine.saved_session() is None


def test_tick_submits_untimed_exam_when_per_question_budget_runs_out(engine, clock):
    questions = [make_question(i) for i in range(1, 4)]
    engine.start(questions, ExamMode.UNTIMED_RANDOM)
    engine.answer(1, questions[0].answer)

    # Two unanswered: 120 seconds from the original start
    clock.advance(119)
    assert engine.tick() is None

    clock.advance(1)
    result = engine.tick()
    assert result is not None
    assert result.auto_submitted
    assert result.unanswered == 2
    assert engine.current is None


def test_reset_time_restores_fixed_budget(engine, clock):
    questions = [make_question(i) for i in range(1, 11)]
    engine.start(questions, ExamMode.UNTIMED_RANDOM)
    engine.answer(1, 1)
    clock.advance(500)

    engine.reset_time()

    assert engine.current.start_time == clock()
    assert engine.current.time_policy is TimePolicy.FIXED
    assert engine.remaining_seconds() == 3600


# ============= Resume =============

def test_resume_restores_answers_and_start_time(stores, engine, clock):
    questions = [make_question(3), make_question(7), make_question(9)]
    started = engine.start(questions, ExamMode.UNTIMED_RANDOM)
    started_at = started.start_time
    engine.answer(7, 2)
    engine.exit()

    clock.advance(300)
    reopened = _reopen(stores, clock)
    reordered = [make_question(9), make_question(3), make_question(7)]
    session = reopened.resume(reordered, ExamMode.UNTIMED_RANDOM)

    assert session is not None
    assert session.answers == {7: 2}
    assert session.start_time == started_at
    assert sorted(session.question_ids) == [3, 7, 9]


def test_resume_without_answers_restamps_start(stores, engine, clock):
    questions = [make_question(3), make_question(7)]
    engine.start(questions, ExamMode.UNTIMED_RANDOM)
    engine.exit()

    clock.advance(900)
    session = _reopen(stores, clock).resume(questions, ExamMode.UNTIMED_RANDOM)

    assert session.start_time == clock()


def test_resume_after_reset_goes_back_to_per_question_budget(stores, engine, clock):
    questions = [make_question(i) for i in range(1, 11)]
    engine.start(questions, ExamMode.UNTIMED_RANDOM)
    engine.answer(1, 1)
    engine.reset_time()
    engine.exit()

    clock.advance(60)
    reopened = _reopen(stores, clock)
    session = reopened.resume(questions, ExamMode.UNTIMED_RANDOM)

    assert session.time_policy is TimePolicy.PER_UNANSWERED
    assert reopened.remaining_seconds() == 9 * 60 - 60


def test_resume_takes_images_from_catalog_questions(stores, engine, clock):
    diagram = make_question(7, image_url="https://example.com/d.png", has_image=True)
    questions = [make_question(3), diagram]
    engine.start(questions, ExamMode.CATEGORY, category="Theory")
    engine.answer(7, 2)
    engine.exit()
    assert stores.sessions.get_current().questions[1].image_url is None

    session = _reopen(stores, clock).resume([diagram, make_question(3)], ExamMode.CATEGORY, "Theory")

    assert session.question_ids == [3, 7]
    assert session.questions[1].image_url == "https://example.com/d.png"
    assert session.answers == {7: 2}


def test_different_question_set_starts_fresh(stores, engine, clock):
    engine.start([make_question(3), make_question(7)], ExamMode.UNTIMED_RANDOM)
    engine.answer(3, 1)
    engine.exit()

    reopened = _reopen(stores, clock)
    other = [make_question(3), make_question(8)]
    assert reopened.resume(other, ExamMode.UNTIMED_RANDOM) is None

    session = reopened.start_or_resume(other, ExamMode.UNTIMED_RANDOM)
    assert session.answers == {}
    assert session.question_ids == [3, 8]


def test_timed_exam_is_never_resumed(stores, engine, clock):
    questions = [make_question(3), make_question(7)]
    engine.start(questions, ExamMode.TIMED_RANDOM)
    engine.answer(3, 1)
    engine.exit()

    assert _reopen(stores, clock).resume(questions, ExamMode.TIMED_RANDOM) is None


def test_is_resumable_checks_mode_category_and_owner(clock):
    questions = [make_question(1), make_question(2)]
    saved = ExamSession(questions=questions, mode=ExamMode.CATEGORY, start_time=clock(), category="Theory", user_id=5)

    assert is_resumable(saved, questions, ExamMode.CATEGORY, "Theory", 5)
    assert not is_resumable(saved, questions, ExamMode.CATEGORY, "Machines", 5)
    assert not is_resumable(saved, questions, ExamMode.UNTIMED_RANDOM, "Theory", 5)
    assert not is_resumable(saved, questions, ExamMode.CATEGORY, "Theory", 6)
    assert not is_resumable(None, questions, ExamMode.CATEGORY, "Theory")


# ============= Answering =============

@pytest.mark.parametrize("option", [0, 5, -1, "2", None, True])
def test_invalid_option_rejected(engine, option):
    engine.start([make_question(1)], ExamMode.UNTIMED_RANDOM)
    with pytest.raises(InvalidAnswerValue):
        engine.answer(1, option)
    assert engine.current.answers == {}


def test_answer_for_foreign_question_rejected(engine):
    engine.start([make_question(1)], ExamMode.UNTIMED_RANDOM)
    with pytest.raises(ValueError):
        engine.answer(2, 1)


def test_operations_without_session_raise(engine):
    with pytest.raises(NoActiveSession):
        engine.answer(1, 1)
    with pytest.raises(NoActiveSession):
        engine.submit()
    assert engine.tick() is None


def test_answer_overwrites_and_persists(stores, engine):
    engine.start([make_question(1), make_question(2)], ExamMode.UNTIMED_RANDOM)
    engine.answer(1, 2)
    engine.answer(1, 4)
    assert stores.sessions.get_current().answers == {1: 4}


def test_start_replaces_saved_session(stores, engine):
    engine.start([make_question(1)], ExamMode.UNTIMED_RANDOM)
    engine.answer(1, 1)
    engine.start([make_question(2)], ExamMode.CATEGORY, category="Theory")

    saved = stores.sessions.get_current()
    assert saved.mode is ExamMode.CATEGORY
    assert saved.answers == {}


# ============= Scoring =============

def test_peek_score_is_read_only(engine, tracker):
    q1, q2 = make_question(1), make_question(2)
    engine.start([q1, q2], ExamMode.UNTIMED_RANDOM)
    engine.answer(1, q1.answer)
    engine.answer(2, wrong_option(q2))

    first = engine.score()
    second = engine.score()

    assert (first.correct, first.wrong, first.score) == (second.correct, second.wrong, second.score)
    assert len(tracker) == 0
    assert engine.current is not None
    assert engine.results.get_statistics().total_exams == 0


def test_would_warn_on_submit(engine):
    questions = [make_question(i) for i in range(1, 4)]
    engine.start(questions, ExamMode.UNTIMED_RANDOM)
    assert engine.would_warn_on_submit().unanswered_count == 3
    for q in questions:
        engine.answer(q.id, 1)
    assert not engine.would_warn_on_submit().should_warn


def test_grade_rounds_half_up(clock):
    questions = [make_question(i) for i in range(1, 9)]
    answers = {q.id: q.answer for q in questions[:5]}
    answers[questions[5].id] = wrong_option(questions[5])
    session = ExamSession(questions=questions, mode=ExamMode.UNTIMED_RANDOM, start_time=clock(), answers=answers)

    result = grade(session, clock())

    # 5 / 8 = 62.5%
    assert result.score == 63
    assert result.percentage == 62.5
    assert result.passed
    assert [q.id for q in result.wrong_questions] == [6]
    assert result.unanswered == 2


def test_submit_updates_ledger_for_answered_only(engine, tracker):
    q1, q2, q3 = make_question(1), make_question(2), make_question(3)
    tracker.record_wrong(3, q3, wrong_option(q3))
    engine.start([q1, q2, q3], ExamMode.UNTIMED_RANDOM)
    engine.answer(1, wrong_option(q1))

    result = engine.submit()

    assert result.wrong == 1
    assert tracker.get(1).wrong_count == 1
    assert tracker.get(2) is None
    assert tracker.get(3).correct_streak == 0
    assert engine.saved_session() is None


# ============= Question lists =============

def test_random_mode_questions_come_in_category_blocks(catalog, rng):
    questions = questions_for_mode(ExamMode.TIMED_RANDOM, catalog, rng=rng)
    categories = [q.category for q in questions]
    assert len(questions) == 60
    assert categories == ["Theory"] * 20 + ["Machines"] * 20 + ["Installations"] * 20


def test_category_mode_requires_category(catalog, rng):
    with pytest.raises(ValueError):
        questions_for_mode(ExamMode.CATEGORY, catalog, rng=rng)
    drill = questions_for_mode(ExamMode.CATEGORY, catalog, category="Machines", rng=rng)
    assert {q.category for q in drill} == {"Machines"}


def test_review_mode_uses_ledger(catalog, tracker, rng):
    with pytest.raises(ValueError):
        questions_for_mode(ExamMode.REVIEW, catalog, rng=rng)
    tracker.record_wrong(5, catalog[4], wrong_option(catalog[4]))
    questions = questions_for_mode(ExamMode.REVIEW, catalog, tracker=tracker, rng=rng)
    assert [q.id for q in questions] == [5]


def test_legacy_mode_names_accepted():
    assert ExamMode("random") is ExamMode.UNTIMED_RANDOM
    assert ExamMode("wrong") is ExamMode.REVIEW


def test_session_start_time_is_timezone_aware(engine):
    session = engine.start([make_question(1)], ExamMode.UNTIMED_RANDOM)
    assert session.start_time.tzinfo == timezone.utc
