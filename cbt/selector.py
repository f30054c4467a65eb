"""
Weighted Selector: category-balanced, non-repeating question sets.

Balanced exams split `total_count` evenly across the fixed categories, then
back-fill any shortfall from the remaining pool. Inside each pool the active
ExamConfig decides how questions are drawn:

- weighting disabled: uniform random, without replacement
- filter mode: uniform random over questions whose weight is selected
  (unweighted questions always pass); fails open to the whole pool
- ratio mode: per-weight quotas from the normalized ratios; an empty
  ratio set selects nothing (fails closed)
"""
import logging
import random
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from engine import CATEGORIES, DRILL_TOTAL, EXAM_TOTAL
from cbt.models import ExamConfig, Question

logger = logging.getLogger(__name__)


def _unique(questions: Iterable[Question]) -> List[Question]:
    """Drop repeated ids, keeping the first occurrence."""
    by_id: Dict[int, Question] = {}
    for q in questions:
        by_id.setdefault(q.id, q)
    return list(by_id.values())


def _shuffled(questions: Sequence[Question], rng) -> List[Question]:
    pool = list(questions)
    rng.shuffle(pool)
    return pool


def _take_random(questions: Sequence[Question], count: int, rng) -> List[Question]:
    """Uniform random draw without replacement (shuffle, take first N)."""
    if count <= 0:
        return []
    return _shuffled(questions, rng)[:count]


def _filter_by_weights(questions: List[Question], selected_weights: List[int]) -> List[Question]:
    if not selected_weights:
        return questions
    allowed = set(selected_weights)
    eligible = [q for q in questions if q.weight is None or q.weight in allowed]
    if not eligible and questions:
        logger.warning(f"No questions match weights {sorted(allowed)}, selecting from all {len(questions)}")
        return questions
    return eligible


def _ratio_targets(count: int, ratios: Dict[int, float]) -> Dict[int, int]:
    """
    Split `count` across weights proportionally to `ratios`.

    Largest-remainder rounding, so the targets always add up to `count`.
    Ties go to the lower weight.
    """
    total_ratio = sum(ratios.values())
    exact = {w: count * r / total_ratio for w, r in ratios.items()}
    targets = {w: int(share) for w, share in exact.items()}
    leftover = count - sum(targets.values())
    by_remainder = sorted(exact, key=lambda w: (-(exact[w] - targets[w]), w))
    for w in by_remainder[:leftover]:
        targets[w] += 1
    return targets


def _select_by_ratio(questions: List[Question], count: int, ratios: Dict[int, float], rng) -> List[Question]:
    active = {w: r for w, r in ratios.items() if r > 0}
    if not active:
        logger.warning(f"Ratio mode with no positive ratios: selecting 0 of {count} from {len(questions)} questions")
        return []

    buckets: Dict[int, List[Question]] = defaultdict(list)
    for q in _shuffled(questions, rng):
        buckets[q.bucket_weight].append(q)

    targets = _ratio_targets(count, active)
    selected: List[Question] = []
    for weight in sorted(targets):
        bucket = buckets[weight]
        take = min(targets[weight], len(bucket))
        if take < targets[weight]:
            logger.warning(f"Only {len(bucket)} questions with weight {weight}, need {targets[weight]}")
        selected.extend(bucket[:take])
        buckets[weight] = bucket[take:]

    # Shortfall goes to other ratio buckets with supply left, in weight order
    for weight in sorted(active):
        short = count - len(selected)
        if short <= 0:
            break
        extra = buckets[weight][:short]
        selected.extend(extra)
        buckets[weight] = buckets[weight][len(extra):]

    short = count - len(selected)
    if short > 0:
        chosen = {q.id for q in selected}
        rest = [q for q in questions if q.id not in chosen]
        selected.extend(_take_random(rest, short, rng))

    return _shuffled(selected, rng)


def select_by_weight(
    questions: Sequence[Question],
    count: int,
    config: Optional[ExamConfig] = None,
    rng=None,
) -> List[Question]:
    """
    Draw up to `count` questions from one pool under the config's weight policy.

    Args:
        questions: Candidate pool (already filtered to a category, if any)
        count: Number of questions wanted
        config: Active ExamConfig (defaults when None)
        rng: Random source with shuffle(); the `random` module when None

    Returns:
        Randomly ordered list of at most `count` distinct questions
    """
    rng = rng or random
    config = config or ExamConfig()
    pool = _unique(questions)
    if not pool or count <= 0:
        return []

    if config.uses_ratios:
        return _select_by_ratio(pool, count, config.weight_ratios, rng)
    if config.uses_filter:
        pool = _filter_by_weights(pool, config.selected_weights)
    return _take_random(pool, count, rng)


def select_balanced(
    all_questions: Sequence[Question],
    total_count: int = EXAM_TOTAL,
    config: Optional[ExamConfig] = None,
    rng=None,
    categories: Sequence[str] = CATEGORIES,
) -> List[Question]:
    """
    Build a category-balanced exam.

    Must-include questions are seeded first, must-exclude questions are
    never drawn. Each category then fills up to floor(total / categories),
    and any remaining slots are back-filled from the unselected pool under
    the same weight policy.

    Returns:
        Shuffled list of at most `total_count` distinct questions; shorter
        when the catalog cannot supply enough (never raises)
    """
    rng = rng or random
    config = config or ExamConfig()
    available = [q for q in _unique(all_questions) if not q.must_exclude]
    if not available or total_count <= 0:
        return []

    excluded = len(all_questions) - len(available)
    if excluded:
        logger.debug(f"Excluded {excluded} must-exclude/duplicate questions")

    must_include = [q for q in available if q.must_include]
    if len(must_include) > total_count:
        logger.warning(f"{len(must_include)} must-include questions exceed exam size {total_count}; keeping a random {total_count}")
        must_include = _take_random(must_include, total_count, rng)

    selected: List[Question] = list(must_include)
    selected_ids = {q.id for q in selected}
    per_category = total_count // len(categories) if categories else 0

    for category in categories:
        already = sum(1 for q in selected if q.category == category)
        target = per_category - already
        pool = [q for q in available if q.category == category and q.id not in selected_ids]
        if not pool:
            logger.warning(f"No questions available in category {category}")
            continue
        if target <= 0:
            continue
        picked = select_by_weight(pool, target, config, rng)
        if len(picked) < target:
            logger.warning(f"Only {len(picked)} {category} questions available, need {target}")
        selected.extend(picked)
        selected_ids.update(q.id for q in picked)
        logger.debug(f"{category}: selected {len(picked)} questions")

    if len(selected) < total_count:
        remaining = [q for q in available if q.id not in selected_ids]
        additional = select_by_weight(remaining, total_count - len(selected), config, rng)
        selected.extend(additional)
        if additional:
            logger.debug(f"Back-filled {len(additional)} questions")

    selected = _shuffled(selected, rng)[:total_count]
    if len(selected) < total_count:
        logger.warning(f"Only {len(selected)} questions available, need {total_count}")
    logger.info(f"Selected {len(selected)} questions ({len(must_include)} must-include)")
    return selected


def select_category_questions(
    all_questions: Sequence[Question],
    category: str,
    count: int = DRILL_TOTAL,
    config: Optional[ExamConfig] = None,
    rng=None,
) -> List[Question]:
    """Single-category variant of select_balanced, used for drills."""
    pool = [q for q in all_questions if q.category == category and not q.must_exclude]
    selected = select_by_weight(pool, count, config, rng)
    if len(selected) < count:
        logger.warning(f"Only {len(selected)} {category} questions available, need {count}")
    return selected


def order_by_category(questions: Sequence[Question], categories: Sequence[str] = CATEGORIES) -> List[Question]:
    """Arrange an exam in category blocks (fixed categories first, others after), stable within a block."""
    rank = {category: i for i, category in enumerate(categories)}
    return sorted(questions, key=lambda q: rank.get(q.category, len(rank)))


def selection_shortfall(selected: Sequence[Question], requested: int) -> int:
    """How many questions a selection is missing; 0 when the pool was large enough."""
    return max(0, requested - len(selected))
