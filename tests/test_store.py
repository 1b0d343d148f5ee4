"""Tests for the storage backends.

Every test runs against both the in-memory store and the SQLAlchemy store
on an in-memory SQLite database.
"""

from collections.abc import Iterator

import pytest

from career_coach_api.errors import ConflictError
from career_coach_api.models import (
    AnalysisDraft,
    ApplicationCreate,
    PortfolioCreate,
    RoadmapItemDraft,
)
from career_coach_api.sql_store import SqlStore
from career_coach_api.store import MemoryStore, Store


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest) -> Iterator[Store]:
    """Yield a fresh store for each backend."""
    if request.param == "memory":
        yield MemoryStore()
    else:
        sql_store = SqlStore.from_url("sqlite://")
        yield sql_store
        sql_store.close()


def _draft(**overrides) -> AnalysisDraft:
    values = {
        "readiness_score": 70,
        "ats_score": 65,
        "feedback": "Good start.",
        "rewritten_content": "# Jane Doe",
        "analysis_data": {"addedKeywords": ["Kubernetes"]},
        "strengths": ["Python"],
        "gaps": ["Go"],
    }
    values.update(overrides)
    return AnalysisDraft(**values)


def _resume(store: Store, role: str = "Backend Engineer"):
    return store.create_resume(target_role=role, file_name="cv.txt", content="Jane Doe, Python")


class TestUsers:
    """Tests for user records."""

    def test_create_and_lookup(self, store: Store) -> None:
        """Test users can be fetched by id and username."""
        user = store.create_user("jane", "hashed")
        assert store.get_user(user.id) == user
        assert store.get_user_by_username("jane") == user
        assert store.get_user_by_username("nobody") is None

    def test_duplicate_username(self, store: Store) -> None:
        """Test usernames are unique."""
        store.create_user("jane", "hashed")
        with pytest.raises(ConflictError):
            store.create_user("jane", "other")

    def test_password_not_serialized(self, store: Store) -> None:
        """Test the password never leaves via model_dump."""
        user = store.create_user("jane", "hashed")
        assert "password" not in user.model_dump(by_alias=True)


class TestResumes:
    """Tests for resume records."""

    def test_ids_start_at_one_and_increase(self, store: Store) -> None:
        """Test ids are assigned sequentially per entity."""
        first = _resume(store)
        second = _resume(store)
        assert (first.id, second.id) == (1, 2)

    def test_new_resume_is_pending(self, store: Store) -> None:
        """Test resumes start in the pending_analysis state."""
        resume = _resume(store)
        assert resume.status == "pending_analysis"
        assert store.get_resume(resume.id).content == "Jane Doe, Python"

    def test_missing_resume(self, store: Store) -> None:
        """Test absence is reported as None."""
        assert store.get_resume(999) is None
        assert store.update_resume_status(999, "failed") is None

    def test_update_status(self, store: Store) -> None:
        """Test only the status changes."""
        resume = _resume(store)
        updated = store.update_resume_status(resume.id, "analyzed")

        assert updated.status == "analyzed"
        assert store.get_resume(resume.id).status == "analyzed"
        assert store.get_resume(resume.id).target_role == resume.target_role

    def test_latest_resume(self, store: Store) -> None:
        """Test the most recently created resume is returned."""
        assert store.get_latest_resume() is None
        _resume(store, "First")
        latest = _resume(store, "Second")
        assert store.get_latest_resume().id == latest.id


class TestAnalysesAndRoadmap:
    """Tests for analysis results and roadmap items."""

    def test_analysis_round_trip(self, store: Store) -> None:
        """Test an analysis is found by its resume id with JSON fields intact."""
        resume = _resume(store)
        created = store.create_analysis_result(resume.id, _draft())
        fetched = store.get_analysis_result_by_resume_id(resume.id)

        assert fetched.id == created.id
        assert fetched.analysis_data == {"addedKeywords": ["Kubernetes"]}
        assert fetched.strengths == ["Python"]
        assert fetched.gaps == ["Go"]
        assert store.get_analysis_result_by_resume_id(resume.id + 1) is None

    def test_roadmap_ordered_by_priority(self, store: Store) -> None:
        """Test items come back sorted by order regardless of insert order."""
        resume = _resume(store)
        analysis = store.create_analysis_result(resume.id, _draft())
        store.create_roadmap_items(
            analysis.id,
            [
                RoadmapItemDraft(title="Third", category="project", order=3),
                RoadmapItemDraft(title="First", category="skill", order=1),
                RoadmapItemDraft(title="Second", category="interview", order=2),
            ],
        )

        items = store.get_roadmap_items_by_analysis_id(analysis.id)
        assert [i.title for i in items] == ["First", "Second", "Third"]
        assert all(i.status == "pending" for i in items)

    def test_roadmap_status_update_is_idempotent(self, store: Store) -> None:
        """Test repeating a status update leaves the same state."""
        resume = _resume(store)
        analysis = store.create_analysis_result(resume.id, _draft())
        [item] = store.create_roadmap_items(
            analysis.id, [RoadmapItemDraft(title="Learn Go", order=1)]
        )

        first = store.update_roadmap_item_status(item.id, "completed")
        second = store.update_roadmap_item_status(item.id, "completed")

        assert first.status == second.status == "completed"
        assert store.get_roadmap_item(item.id).status == "completed"
        assert store.get_roadmap_item(item.id).title == "Learn Go"

    def test_update_missing_roadmap_item(self, store: Store) -> None:
        """Test updating an unknown item returns None."""
        assert store.update_roadmap_item_status(42, "completed") is None


class TestInterviews:
    """Tests for interviews and their messages."""

    def test_messages_in_creation_order(self, store: Store) -> None:
        """Test the transcript is returned oldest first."""
        interview = store.create_interview(resume_id=1, user_id=1)
        store.create_interview_message(interview.id, "ai", "Welcome")
        store.create_interview_message(interview.id, "user", "Hi")
        store.create_interview_message(interview.id, "ai", "First question")

        messages = store.get_interview_messages(interview.id)
        assert [(m.role, m.content) for m in messages] == [
            ("ai", "Welcome"),
            ("user", "Hi"),
            ("ai", "First question"),
        ]

    def test_messages_scoped_to_interview(self, store: Store) -> None:
        """Test messages do not leak between interviews."""
        first = store.create_interview(resume_id=1, user_id=1)
        second = store.create_interview(resume_id=1, user_id=1)
        store.create_interview_message(first.id, "ai", "Hello first")

        assert store.get_interview_messages(second.id) == []
        assert store.get_interview(999) is None


class TestPortfoliosAndApplications:
    """Tests for portfolios and job applications."""

    def test_portfolio_lookup(self, store: Store) -> None:
        """Test portfolios are found by user and by domain."""
        created = store.create_portfolio(
            PortfolioCreate(user_id=7, domain="jane", projects=[{"name": "CLI"}])
        )

        assert store.get_portfolio_by_user_id(7).id == created.id
        assert store.get_portfolio_by_domain("jane").projects == [{"name": "CLI"}]
        assert store.get_portfolio_by_domain("nobody") is None

    def test_portfolio_domain_unique(self, store: Store) -> None:
        """Test two portfolios cannot share a domain."""
        store.create_portfolio(PortfolioCreate(user_id=1, domain="jane"))
        with pytest.raises(ConflictError):
            store.create_portfolio(PortfolioCreate(user_id=2, domain="jane"))

    def test_applications_newest_first(self, store: Store) -> None:
        """Test applications are listed most recent first, per user."""
        store.create_application(ApplicationCreate(user_id=1, role="SRE", company="Acme"))
        store.create_application(ApplicationCreate(user_id=1, role="SWE", company="Globex"))
        store.create_application(ApplicationCreate(user_id=2, role="PM", company="Initech"))

        apps = store.get_applications(1)
        assert [a.company for a in apps] == ["Globex", "Acme"]
        assert apps[0].status == "Applied"


class TestMemoryStoreIsolation:
    """Tests specific to the in-memory store."""

    def test_returned_records_are_copies(self) -> None:
        """Test mutating a returned record does not change stored state."""
        store = MemoryStore()
        resume = _resume(store)
        resume.status = "failed"

        assert store.get_resume(resume.id).status == "pending_analysis"
