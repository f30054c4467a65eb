"""
Remote catalog and result sync over Supabase.

SupabaseQuestionStore offers the same interface as the local QuestionStore
over a `questions` table holding rows in the external sheet format, so the
two backing stores are interchangeable. Everything here is best-effort:
failures are logged and reported through return values.
"""
import logging
from typing import List, Optional

from supabase import Client

from cbt.models import ExamResult, Question
from cbt.storage import QuestionStore

logger = logging.getLogger(__name__)


class SupabaseQuestionStore:
    """Wrapper around a Supabase client with question-catalog operations."""

    PAGE_SIZE = 1000
    CHUNK_SIZE = 200

    def __init__(self, client: Client, table: str = "questions"):
        self.client = client
        self.table = table

    def _rows_to_questions(self, rows: List[dict]) -> List[Question]:
        questions = []
        for row in rows:
            try:
                questions.append(Question.from_row(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed row {row.get('id')!r}: {e}")
        return questions

    def get_all(self) -> List[Question]:
        """Fetch the whole catalog in pages (Supabase caps a single response)."""
        try:
            all_rows = []
            offset = 0
            while True:
                r = (
                    self.client.table(self.table)
                    .select("*")
                    .order("id")
                    .range(offset, offset + self.PAGE_SIZE - 1)
                    .execute()
                )
                data = r.data or []
                if not data:
                    break
                all_rows.extend(data)
                if len(data) < self.PAGE_SIZE:
                    break
                offset += self.PAGE_SIZE
            return self._rows_to_questions(all_rows)
        except Exception as e:
            logger.error(f"Error fetching questions: {e}")
            return []

    def get_by_id(self, question_id: int) -> Optional[Question]:
        try:
            r = self.client.table(self.table).select("*").eq("id", question_id).limit(1).execute()
            questions = self._rows_to_questions(r.data or [])
            return questions[0] if questions else None
        except Exception as e:
            logger.error(f"Error fetching question {question_id}: {e}")
            return None

    def get_by_category(self, category: str) -> List[Question]:
        try:
            r = self.client.table(self.table).select("*").eq("category", category).execute()
            return self._rows_to_questions(r.data or [])
        except Exception as e:
            logger.error(f"Error fetching questions by category {category}: {e}")
            return []

    def save_all(self, questions: List[Question]) -> int:
        """
        Batch upsert with chunking. Dedupes by id so no chunk has duplicates.

        Returns:
            Number of questions upserted
        """
        rows = list({q.id: q.to_row() for q in questions}.values())
        if len(rows) < len(questions):
            logger.info(f"Deduped questions by id: {len(questions)} -> {len(rows)}")
        total = 0
        n_chunks = (len(rows) + self.CHUNK_SIZE - 1) // self.CHUNK_SIZE
        for i in range(0, len(rows), self.CHUNK_SIZE):
            chunk = rows[i : i + self.CHUNK_SIZE]
            try:
                self.client.table(self.table).upsert(chunk, on_conflict="id").execute()
                total += len(chunk)
                logger.debug(f"Upserted chunk {i // self.CHUNK_SIZE + 1}/{n_chunks}: {len(chunk)} questions")
            except Exception as e:
                logger.error(f"Error upserting chunk: {e}")
        logger.info(f"Total questions upserted: {total}")
        return total

    def add(self, question: Question) -> Optional[Question]:
        """Insert under the next free id (the passed id is ignored)."""
        try:
            r = self.client.table(self.table).select("id").order("id", desc=True).limit(1).execute()
            last_id = int(r.data[0]["id"]) if r.data else 0
            created = Question.from_row({**question.to_row(), "id": last_id + 1})
            self.client.table(self.table).insert(created.to_row()).execute()
            return created
        except Exception as e:
            logger.error(f"Error adding question: {e}")
            return None

    def update(self, question: Question) -> bool:
        try:
            r = self.client.table(self.table).update(question.to_row()).eq("id", question.id).execute()
            return bool(r.data)
        except Exception as e:
            logger.error(f"Error updating question {question.id}: {e}")
            return False

    def delete(self, question_id: int) -> bool:
        try:
            r = self.client.table(self.table).delete().eq("id", question_id).execute()
            return bool(r.data)
        except Exception as e:
            logger.error(f"Error deleting question {question_id}: {e}")
            return False


def pull_catalog(remote: SupabaseQuestionStore, local: QuestionStore) -> int:
    """Replace the local catalog with the remote one. An empty remote leaves local data alone."""
    questions = remote.get_all()
    if not questions:
        logger.warning("Remote catalog is empty or unreachable; local catalog kept")
        return 0
    if not local.save_all(questions):
        return 0
    logger.info(f"Pulled {len(questions)} questions into the local catalog")
    return len(questions)


def push_catalog(local: QuestionStore, remote: SupabaseQuestionStore) -> int:
    questions = local.get_all()
    if not questions:
        logger.warning("Local catalog is empty; nothing to push")
        return 0
    return remote.save_all(questions)


def save_exam_result(client: Client, result: ExamResult, table: str = "exam_results") -> bool:
    """Upload one finished exam (counts only, no question payloads)."""
    row = {
        "user_id": result.user_id,
        "mode": result.mode.value,
        "category": result.category,
        "total": result.total,
        "correct": result.correct,
        "wrong": result.wrong,
        "unanswered": result.unanswered,
        "score": result.score,
        "passed": result.passed,
        "category_breakdown": result.category_breakdown,
        "created_at": result.timestamp.isoformat(),
    }
    try:
        client.table(table).insert(row).execute()
        return True
    except Exception as e:
        logger.error(f"Error saving exam result: {e}")
        return False
