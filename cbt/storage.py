"""
Local persistence for the exam core.

LocalStore is a small synchronous key-value surface (one JSON file per key),
the local-storage equivalent. The boundary stores on top of it absorb every
storage failure: reads fall back to empty/default values and writes report
False, so the in-memory state of a running session stays authoritative.
"""
import json
import logging
import os
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from engine import CATEGORIES
from cbt.errors import CorruptCatalog, PersistenceFailure
from cbt.models import (
    ExamConfig,
    ExamResult,
    ExamSession,
    Question,
    Statistics,
    WrongAnswerEntry,
)

logger = logging.getLogger(__name__)

load_dotenv()

DATA_DIR = Path(os.getenv("CBT_DATA_DIR", Path.home() / ".electrical_cbt"))

QUESTIONS_KEY = "questions"
EXAM_CONFIG_KEY = "exam_config"
CURRENT_SESSION_KEY = "current_exam_session"
WRONG_ANSWERS_KEY = "wrong_answers"
EXAM_RESULTS_KEY = "exam_results"
STATISTICS_KEY = "statistics"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class LocalStore:
    """JSON-file key-value store. Absence of a key is a normal None, not an error."""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir or DATA_DIR)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise PersistenceFailure(f"Invalid storage key: {key!r}")
        return self.data_dir / f"{key}.json"

    def get_bytes(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceFailure(f"Could not read {key}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        data = self.get_bytes(key)
        if data is None:
            return None
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PersistenceFailure(f"{key} is not valid UTF-8: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(value, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise PersistenceFailure(f"Could not write {key}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceFailure(f"Could not remove {key}: {e}") from e

    def keys(self) -> List[str]:
        if not self.data_dir.exists():
            return []
        return sorted(p.stem for p in self.data_dir.glob("*.json"))


def _read_json(kv: LocalStore, key: str):
    raw = kv.get(key)
    return None if raw is None else json.loads(raw)


def _write_json(kv: LocalStore, key: str, data) -> None:
    kv.set(key, json.dumps(data, ensure_ascii=False))


def question_from_any(data: Dict) -> Question:
    """Parse a question saved either by this app or as an external sheet row."""
    if "option1" in data or "question" in data:
        return Question.from_row(data)
    return Question.from_dict(data)


# ============= Questions =============

class QuestionStore:
    """Question catalog: CRUD plus category lookups."""

    def __init__(self, kv: LocalStore):
        self.kv = kv

    def _load(self) -> List[Question]:
        data = self.kv.get_bytes(QUESTIONS_KEY)
        if data is None:
            return []
        try:
            raw = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptCatalog(f"Catalog is not valid UTF-8: {e}", data.decode("utf-8", errors="replace")) from e
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise CorruptCatalog(f"Catalog is not valid JSON: {e}", raw) from e
        if not isinstance(data, list):
            raise CorruptCatalog(f"Catalog is a {type(data).__name__}, expected a list", raw)
        try:
            return [question_from_any(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptCatalog(f"Catalog entry has the wrong shape: {e}", raw) from e

    def _backup(self, raw: str) -> None:
        backup_key = f"{QUESTIONS_KEY}_backup_{int(datetime.now(timezone.utc).timestamp() * 1000)}"
        try:
            self.kv.set(backup_key, raw)
            logger.warning(f"Saved unreadable catalog to {backup_key}")
        except PersistenceFailure as e:
            logger.error(f"Error backing up unreadable catalog: {e}")

    def get_all(self) -> List[Question]:
        try:
            questions = self._load()
        except CorruptCatalog as e:
            logger.error(f"Catalog unreadable, treating as empty: {e}")
            self._backup(e.raw)
            return []
        except PersistenceFailure as e:
            logger.error(f"Error fetching questions: {e}")
            return []
        return sorted(questions, key=lambda q: q.id)

    def save_all(self, questions: List[Question]) -> bool:
        by_id = {q.id: q for q in questions}
        try:
            _write_json(self.kv, QUESTIONS_KEY, [q.to_dict() for q in by_id.values()])
            logger.debug(f"Saved {len(by_id)} questions")
            return True
        except Exception as e:
            logger.error(f"Error saving questions: {e}")
            return False

    def get_by_id(self, question_id: int) -> Optional[Question]:
        return next((q for q in self.get_all() if q.id == question_id), None)

    def get_by_category(self, category: str) -> List[Question]:
        return [q for q in self.get_all() if q.category == category]

    def counts_by_category(self) -> Dict[str, int]:
        """Returns {category: count} with every fixed category present, plus total."""
        counts = {category: 0 for category in CATEGORIES}
        questions = self.get_all()
        for q in questions:
            counts[q.category] = counts.get(q.category, 0) + 1
        counts["total"] = len(questions)
        return counts

    def add(self, question: Question) -> Optional[Question]:
        """Store a new question under the next free id (the passed id is ignored)."""
        questions = self.get_all()
        new_id = max((q.id for q in questions), default=0) + 1
        created = replace(question, id=new_id)
        if not self.save_all(questions + [created]):
            return None
        return created

    def update(self, question: Question) -> bool:
        questions = self.get_all()
        if not any(q.id == question.id for q in questions):
            logger.warning(f"Question {question.id} not found, nothing updated")
            return False
        return self.save_all([question if q.id == question.id else q for q in questions])

    def delete(self, question_id: int) -> bool:
        questions = self.get_all()
        remaining = [q for q in questions if q.id != question_id]
        if len(remaining) == len(questions):
            return False
        return self.save_all(remaining)


# ============= Exam config =============

class ConfigStore:
    def __init__(self, kv: LocalStore):
        self.kv = kv

    def get_exam_config(self) -> ExamConfig:
        try:
            data = _read_json(self.kv, EXAM_CONFIG_KEY)
            if data is None:
                return ExamConfig()
            return ExamConfig.from_dict(data)
        except Exception as e:
            logger.error(f"Error loading exam config, using defaults: {e}")
            return ExamConfig()

    def save_exam_config(self, config: ExamConfig) -> bool:
        try:
            _write_json(self.kv, EXAM_CONFIG_KEY, config.to_dict())
            return True
        except Exception as e:
            logger.error(f"Error saving exam config: {e}")
            return False

    def reset_exam_config(self) -> ExamConfig:
        config = ExamConfig()
        self.save_exam_config(config)
        return config


# ============= Current session =============

class SessionStore:
    """Single slot: at most one current exam session."""

    def __init__(self, kv: LocalStore):
        self.kv = kv

    def get_current(self) -> Optional[ExamSession]:
        try:
            data = _read_json(self.kv, CURRENT_SESSION_KEY)
            return None if data is None else ExamSession.from_dict(data)
        except Exception as e:
            logger.error(f"Error loading current session: {e}")
            return None

    def save_current(self, session: ExamSession) -> bool:
        try:
            _write_json(self.kv, CURRENT_SESSION_KEY, session.to_dict())
            logger.debug(f"Session saved: {session.answered_count}/{len(session.questions)} answered")
            return True
        except Exception as e:
            logger.error(f"Error saving current session: {e}")
            return False

    def clear_current(self) -> bool:
        try:
            self.kv.remove(CURRENT_SESSION_KEY)
            return True
        except Exception as e:
            logger.error(f"Error clearing current session: {e}")
            return False


# ============= Wrong answers =============

class WrongAnswerStore:
    def __init__(self, kv: LocalStore):
        self.kv = kv

    def get_all(self) -> List[WrongAnswerEntry]:
        try:
            data = _read_json(self.kv, WRONG_ANSWERS_KEY) or []
            return [WrongAnswerEntry.from_dict(item) for item in data]
        except Exception as e:
            logger.error(f"Error loading wrong answers: {e}")
            return []

    def save_all(self, entries: List[WrongAnswerEntry]) -> bool:
        try:
            _write_json(self.kv, WRONG_ANSWERS_KEY, [e.to_dict() for e in entries])
            return True
        except Exception as e:
            logger.error(f"Error saving wrong answers: {e}")
            return False

    def upsert(self, entry: WrongAnswerEntry) -> bool:
        entries = [e for e in self.get_all() if e.question_id != entry.question_id]
        entries.append(entry)
        return self.save_all(entries)

    def remove(self, question_id: int) -> bool:
        entries = self.get_all()
        remaining = [e for e in entries if e.question_id != question_id]
        if len(remaining) == len(entries):
            return True
        return self.save_all(remaining)

    def clear(self) -> bool:
        return self.save_all([])


# ============= Results and statistics =============

class ResultStore:
    """Append-only result log plus the rolling Statistics aggregate."""

    def __init__(self, kv: LocalStore):
        self.kv = kv

    def get_results(self) -> List[ExamResult]:
        try:
            data = _read_json(self.kv, EXAM_RESULTS_KEY) or []
            return [ExamResult.from_dict(item) for item in data]
        except Exception as e:
            logger.error(f"Error loading exam results: {e}")
            return []

    def append_result(self, result: ExamResult) -> bool:
        try:
            data = _read_json(self.kv, EXAM_RESULTS_KEY) or []
            data.append(result.to_dict())
            _write_json(self.kv, EXAM_RESULTS_KEY, data)
            return True
        except Exception as e:
            logger.error(f"Error saving exam result: {e}")
            return False

    def get_statistics(self) -> Statistics:
        try:
            data = _read_json(self.kv, STATISTICS_KEY)
            return Statistics() if data is None else Statistics.from_dict(data)
        except Exception as e:
            logger.error(f"Error loading statistics: {e}")
            return Statistics()

    def save_statistics(self, stats: Statistics) -> bool:
        try:
            _write_json(self.kv, STATISTICS_KEY, stats.to_dict())
            return True
        except Exception as e:
            logger.error(f"Error saving statistics: {e}")
            return False

    def update_aggregate(self, result: ExamResult) -> bool:
        stats = self.get_statistics()
        stats.record(result)
        return self.save_statistics(stats)

    def clear_statistics(self) -> bool:
        return self.save_statistics(Statistics())

    def clear_results(self) -> bool:
        try:
            _write_json(self.kv, EXAM_RESULTS_KEY, [])
            return True
        except Exception as e:
            logger.error(f"Error clearing exam results: {e}")
            return False


@dataclass
class Stores:
    """Every boundary store over one LocalStore."""

    kv: LocalStore
    questions: QuestionStore
    config: ConfigStore
    sessions: SessionStore
    wrong_answers: WrongAnswerStore
    results: ResultStore

    @classmethod
    def open(cls, data_dir: Optional[Path] = None) -> "Stores":
        kv = LocalStore(data_dir)
        return cls(
            kv=kv,
            questions=QuestionStore(kv),
            config=ConfigStore(kv),
            sessions=SessionStore(kv),
            wrong_answers=WrongAnswerStore(kv),
            results=ResultStore(kv),
        )


# ============= Backup =============

def export_data(stores: Stores) -> str:
    """Full JSON backup of catalog, wrong answers, results and statistics."""
    data = {
        "version": 1,
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "questions": [q.to_dict() for q in stores.questions.get_all()],
        "wrong_answers": [e.to_dict() for e in stores.wrong_answers.get_all()],
        "exam_results": [r.to_dict() for r in stores.results.get_results()],
        "statistics": stores.results.get_statistics().to_dict(),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def import_data(stores: Stores, raw: str) -> Dict[str, int]:
    """
    Restore a backup produced by export_data. Sections missing from the
    backup are left untouched.

    Raises:
        ValueError: backup is not valid JSON or a section has the wrong shape
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ValueError(f"Backup is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Backup must be a JSON object")

    try:
        questions = [question_from_any(q) for q in data.get("questions") or []]
        entries = [WrongAnswerEntry.from_dict(e) for e in data.get("wrong_answers") or []]
        results = [ExamResult.from_dict(r) for r in data.get("exam_results") or []]
        stats = Statistics.from_dict(data["statistics"]) if data.get("statistics") else None
    except (KeyError, TypeError) as e:
        raise ValueError(f"Backup section has the wrong shape: {e}") from e

    counts = {"questions": 0, "wrong_answers": 0, "exam_results": 0}
    if "questions" in data and stores.questions.save_all(questions):
        counts["questions"] = len(questions)
    if "wrong_answers" in data:
        stores.wrong_answers.save_all(entries)
        counts["wrong_answers"] = len(entries)
    if "exam_results" in data:
        stores.results.clear_results()
        for result in results:
            stores.results.append_result(result)
        counts["exam_results"] = len(results)
    if stats is not None:
        stores.results.save_statistics(stats)
    logger.info(f"Imported backup: {counts}")
    return counts
