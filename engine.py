"""Pure exam constants: composition, timing, scoring, mastery. No UI."""
# Scoring: score = round(correct / total * 100), pass at 60
# Review mode scores over answered questions only

CATEGORIES = ("Theory", "Machines", "Installations")
OTHER_CATEGORY = "Other"

EXAM_TOTAL = 60
DRILL_TOTAL = 20
REVIEW_CAP = 20

EXAM_DURATION_MINUTES = 60
EXAM_DURATION_SECONDS = EXAM_DURATION_MINUTES * 60
SECONDS_PER_UNANSWERED = 60

PASS_SCORE = 60
MASTERY_STREAK = 3
RECENT_RESULTS_LIMIT = 10

DEFAULT_WEIGHT = 5
WEIGHTS = tuple(range(1, 11))
OPTION_RANGE = (1, 4)
