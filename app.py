"""Electrical CBT: multi-page exam simulator."""
import sys
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import streamlit as st

from engine import CATEGORIES, DRILL_TOTAL, EXAM_DURATION_MINUTES, EXAM_TOTAL, PASS_SCORE, REVIEW_CAP
from cbt.engine import ExamEngine, is_resumable, questions_for_mode
from cbt.models import ExamMode
from cbt.selector import selection_shortfall
from cbt.storage import Stores
from cbt.wrong_answers import WrongAnswerTracker

MODE_LABELS = {
    ExamMode.TIMED_RANDOM: f"Mock exam ({EXAM_TOTAL} questions, {EXAM_DURATION_MINUTES} min, auto-submit)",
    ExamMode.UNTIMED_RANDOM: f"Practice exam ({EXAM_TOTAL} questions, 1 min per unanswered, resumable)",
    ExamMode.CATEGORY: f"Category drill ({DRILL_TOTAL} questions)",
    ExamMode.REVIEW: f"Wrong-answer review (up to {REVIEW_CAP})",
}
OPTION_LABELS = ["1", "2", "3", "4"]


@st.cache_resource
def get_stores() -> Stores:
    return Stores.open()


def get_engine() -> ExamEngine:
    """One engine per browser session, sharing the cached stores."""
    if "engine" not in st.session_state:
        stores = get_stores()
        tracker = WrongAnswerTracker(stores.wrong_answers)
        st.session_state["engine"] = ExamEngine(stores.sessions, tracker, stores.results)
    return st.session_state["engine"]


def sync_remote_catalog(stores: Stores) -> int:
    from db import get_supabase, remote_configured
    from cbt.database import SupabaseQuestionStore, pull_catalog

    if not remote_configured():
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    return pull_catalog(SupabaseQuestionStore(get_supabase()), stores.questions)


def go_to(page: str) -> None:
    st.query_params["page"] = page
    st.rerun()


def start_exam(mode: ExamMode, category=None) -> None:
    stores = get_stores()
    engine = get_engine()
    catalog = stores.questions.get_all()
    questions = questions_for_mode(mode, catalog, stores.config.get_exam_config(), engine.tracker, category)
    if not questions:
        st.warning("No questions available for this mode.")
        return
    requested = {ExamMode.CATEGORY: DRILL_TOTAL, ExamMode.REVIEW: len(questions)}.get(mode, EXAM_TOTAL)
    short = selection_shortfall(questions, requested)
    if short:
        st.warning(f"Only {len(questions)} questions available ({short} short of {requested}).")
    engine.start_or_resume(questions, mode, category)
    st.session_state["current_q"] = 0
    st.session_state.pop("last_result", None)
    go_to("Exam")


@st.fragment(run_every=1)
def timer_panel(engine: ExamEngine) -> None:
    """One-second tick; remaining time is derived from the clock, so missed ticks don't drift."""
    if engine.current is None:
        return
    result = engine.tick()
    if result is not None:
        st.session_state["last_result"] = result
        st.rerun(scope="app")
    remaining = engine.remaining_seconds()
    if remaining is not None:
        m, s = divmod(remaining, 60)
        st.metric("Time left", f"{m}:{s:02d}")


def render_result(result) -> None:
    st.success("Passed!" if result.passed else f"Not passed (pass mark {PASS_SCORE}).")
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Score", result.score)
    with col2:
        st.metric("Correct", f"{result.correct}/{result.total}")
    with col3:
        st.metric("Wrong", result.wrong)
    with col4:
        st.metric("Unanswered", result.unanswered)
    if result.auto_submitted:
        st.info("Time ran out; the exam was submitted automatically.")
    for category, counts in result.category_breakdown.items():
        st.caption(f"{category}: {counts['correct']}/{counts['total']}")


st.set_page_config(page_title="Electrical CBT", layout="wide")
st.sidebar.title("Electrical CBT")
PAGES = ["Dashboard", "Exam", "Wrong Answers", "Statistics"]
# Allow URL to open a specific page (e.g. after starting an exam)
default_page = st.query_params.get("page", "Dashboard")
if default_page not in PAGES:
    default_page = "Dashboard"
page = st.sidebar.radio("Navigate", PAGES, index=PAGES.index(default_page), label_visibility="collapsed")

# ----- Dashboard -----
if page == "Dashboard":
    st.header("Dashboard")
    stores = get_stores()
    counts = stores.questions.counts_by_category()
    cols = st.columns(len(CATEGORIES) + 1)
    with cols[0]:
        st.metric("Total questions", counts["total"])
    for col, category in zip(cols[1:], CATEGORIES):
        with col:
            st.metric(category, counts.get(category, 0))

    saved = get_engine().saved_session()
    if saved is not None and saved.mode.resumable:
        st.info(
            f"Unfinished {MODE_LABELS[saved.mode]}: {saved.answered_count}/{len(saved.questions)} answered. "
            "Start the same mode again to resume it."
        )

    mode = st.radio("Mode", list(MODE_LABELS), format_func=lambda m: MODE_LABELS[m])
    category = None
    if mode is ExamMode.CATEGORY:
        category = st.selectbox("Category", CATEGORIES)
    if st.button("Start", type="primary", use_container_width=True):
        if saved is not None and is_resumable(saved, saved.questions, mode, category):
            # Resume the exact saved question set, with images from the catalog
            by_id = {q.id: q for q in stores.questions.get_all()}
            get_engine().resume([by_id.get(q.id, q) for q in saved.questions], mode, category)
            st.session_state["current_q"] = 0
            go_to("Exam")
        else:
            start_exam(mode, category)

    with st.expander("Remote catalog"):
        if st.button("Pull questions from Supabase"):
            try:
                st.success(f"Pulled {sync_remote_catalog(stores)} questions.")
            except Exception as e:
                st.error(f"Could not sync. Check .env (SUPABASE_URL, SUPABASE_KEY). {e}")

# ----- Exam -----
elif page == "Exam":
    st.header("Exam")
    engine = get_engine()

    if "last_result" in st.session_state:
        render_result(st.session_state["last_result"])
        if st.button("Back to dashboard"):
            st.session_state.pop("last_result", None)
            go_to("Dashboard")
        st.stop()

    session = engine.current
    if session is None:
        st.info("No exam in progress. Start one from the dashboard.")
        st.stop()

    timer_panel(engine)
    if session.mode.has_time_budget:
        if st.sidebar.button("Reset time"):
            engine.reset_time()
            st.rerun()
    n = len(session.questions)
    st.sidebar.progress(session.answered_count / n if n else 0)
    st.sidebar.caption(f"{session.answered_count}/{n} answered")

    idx = min(st.session_state.get("current_q", 0), n - 1)
    q = session.questions[idx]
    st.subheader(f"Question {idx + 1} of {n} · {q.category}")
    st.write(q.text)
    if q.image_url:
        st.image(q.image_url)

    current = session.answers.get(q.id)
    choice = st.radio(
        "Choose one:",
        OPTION_LABELS,
        format_func=lambda label: f"{label}. {q.options[int(label) - 1]}",
        index=current - 1 if current else None,
        key=f"q_{q.id}",
    )
    if choice is not None and int(choice) != current:
        engine.answer(q.id, int(choice))

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        if st.button("Previous") and idx > 0:
            st.session_state["current_q"] = idx - 1
            st.rerun()
    with col2:
        if st.button("Next") and idx < n - 1:
            st.session_state["current_q"] = idx + 1
            st.rerun()
    with col3:
        if st.button("Save and exit") and session.mode.resumable:
            engine.exit()
            go_to("Dashboard")
    with col4:
        confirm = False
        check = engine.would_warn_on_submit()
        if check.should_warn:
            confirm = st.checkbox(f"Submit with {check.unanswered_count} unanswered")
        if st.button("Submit exam", type="primary") and (confirm or not check.should_warn):
            st.session_state["last_result"] = engine.submit()
            st.rerun()

    with st.expander("Score so far"):
        peek = engine.score()
        st.write(f"{peek.correct}/{peek.total} correct ({peek.percentage}%)")

# ----- Wrong Answers -----
elif page == "Wrong Answers":
    st.header("Wrong Answers")
    tracker = get_engine().tracker
    groups = tracker.grouped_by_category()
    if not groups:
        st.success("No wrong answers recorded.")
    for category, entries in groups.items():
        st.subheader(f"{category} ({len(entries)})")
        for entry in entries:
            q = entry.question
            with st.expander(f"#{q.id} · missed {entry.wrong_count}x · streak {entry.correct_streak}"):
                st.write(q.text)
                st.write(f"Your answer: {q.options[entry.user_answer - 1]}")
                st.write(f"Correct answer: {q.options[q.answer - 1]}")
                if q.explanation:
                    st.caption(q.explanation)
    if groups and st.button("Clear wrong answers"):
        tracker.clear()
        st.rerun()

# ----- Statistics -----
elif page == "Statistics":
    st.header("Statistics")
    results = get_stores().results
    stats = results.get_statistics()
    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Exams taken", stats.total_exams)
    with col2:
        st.metric("Passed", stats.passed_exams)
    with col3:
        st.metric("Average score", stats.average_score)
    for category, counts in stats.category_stats.items():
        pct = counts["correct"] / counts["total"] * 100 if counts["total"] else 0
        st.caption(f"{category}: {counts['correct']}/{counts['total']} ({pct:.1f}%)")
    if stats.recent_results:
        st.subheader("Recent exams")
        st.table([
            {
                "When": r.timestamp.strftime("%Y-%m-%d %H:%M"),
                "Mode": r.mode.value,
                "Score": r.score,
                "Passed": r.passed,
            }
            for r in reversed(stats.recent_results)
        ])
    if st.button("Reset statistics"):
        results.clear_statistics()
        results.clear_results()
        st.rerun()
