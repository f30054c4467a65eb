"""Shared fixtures: question factory, on-disk stores, a controllable clock."""
import random
from datetime import datetime, timedelta, timezone

import pytest

from engine import CATEGORIES
from cbt.engine import ExamEngine
from cbt.models import Question
from cbt.storage import Stores
from cbt.wrong_answers import WrongAnswerTracker


def make_question(qid, category="Theory", answer=None, **kwargs):
    """Valid question; the correct option cycles 1-4 by id unless given."""
    return Question(
        id=qid,
        category=category,
        text=f"Question {qid}",
        options=(f"A{qid}", f"B{qid}", f"C{qid}", f"D{qid}"),
        answer=answer if answer is not None else qid % 4 + 1,
        explanation=f"Explanation {qid}",
        **kwargs,
    )


def make_catalog(per_category=20, categories=CATEGORIES, start=1):
    questions = []
    qid = start
    for category in categories:
        for _ in range(per_category):
            questions.append(make_question(qid, category))
            qid += 1
    return questions


def wrong_option(question):
    return question.answer % 4 + 1


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def catalog():
    """20 questions in each fixed category, ids 1-60."""
    return make_catalog()


@pytest.fixture
def stores(tmp_path):
    return Stores.open(tmp_path / "data")


@pytest.fixture
def tracker(stores, clock):
    return WrongAnswerTracker(stores.wrong_answers, clock=clock)


@pytest.fixture
def engine(stores, tracker, clock):
    return ExamEngine(stores.sessions, tracker, stores.results, clock=clock)
