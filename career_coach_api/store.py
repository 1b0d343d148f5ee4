"""Storage interface and the in-memory reference implementation."""

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable

from career_coach_api.errors import ConflictError
from career_coach_api.models import (
    AnalysisDraft,
    AnalysisResult,
    Application,
    ApplicationCreate,
    Interview,
    InterviewMessage,
    MessageRole,
    Portfolio,
    PortfolioCreate,
    Resume,
    ResumeStatus,
    RoadmapItem,
    RoadmapItemDraft,
    RoadmapStatus,
    User,
    utcnow,
)


class Store(ABC):
    """Persistence for every entity.

    ``get_*`` methods return ``None`` for absence and never raise for it.
    The only updatable fields are ``Resume.status`` and ``RoadmapItem.status``.
    """

    # Users
    @abstractmethod
    def create_user(self, username: str, password: str) -> User: ...

    @abstractmethod
    def get_user(self, user_id: int) -> User | None: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> User | None: ...

    # Resumes
    @abstractmethod
    def create_resume(
        self,
        *,
        target_role: str,
        file_name: str,
        content: str = "",
        user_id: int | None = None,
    ) -> Resume: ...

    @abstractmethod
    def get_resume(self, resume_id: int) -> Resume | None: ...

    @abstractmethod
    def get_latest_resume(self) -> Resume | None: ...

    @abstractmethod
    def update_resume_status(self, resume_id: int, status: ResumeStatus) -> Resume | None: ...

    # Analyses
    @abstractmethod
    def create_analysis_result(self, resume_id: int, draft: AnalysisDraft) -> AnalysisResult: ...

    @abstractmethod
    def get_analysis_result_by_resume_id(self, resume_id: int) -> AnalysisResult | None: ...

    # Roadmap
    @abstractmethod
    def create_roadmap_items(
        self, analysis_id: int, items: Iterable[RoadmapItemDraft]
    ) -> list[RoadmapItem]: ...

    @abstractmethod
    def get_roadmap_item(self, item_id: int) -> RoadmapItem | None: ...

    @abstractmethod
    def get_roadmap_items_by_analysis_id(self, analysis_id: int) -> list[RoadmapItem]: ...

    @abstractmethod
    def update_roadmap_item_status(
        self, item_id: int, status: RoadmapStatus
    ) -> RoadmapItem | None: ...

    # Interviews
    @abstractmethod
    def create_interview(self, resume_id: int, user_id: int) -> Interview: ...

    @abstractmethod
    def get_interview(self, interview_id: int) -> Interview | None: ...

    @abstractmethod
    def create_interview_message(
        self, interview_id: int, role: MessageRole, content: str
    ) -> InterviewMessage: ...

    @abstractmethod
    def get_interview_messages(self, interview_id: int) -> list[InterviewMessage]: ...

    # Portfolios
    @abstractmethod
    def create_portfolio(self, portfolio: PortfolioCreate) -> Portfolio: ...

    @abstractmethod
    def get_portfolio_by_user_id(self, user_id: int) -> Portfolio | None: ...

    @abstractmethod
    def get_portfolio_by_domain(self, domain: str) -> Portfolio | None: ...

    # Applications
    @abstractmethod
    def create_application(self, application: ApplicationCreate) -> Application: ...

    @abstractmethod
    def get_applications(self, user_id: int) -> list[Application]: ...


class MemoryStore(Store):
    """Dict-backed store with per-entity integer counters.

    Records are copied on the way in and out so callers never hold a
    reference into the store's own state.
    """

    _ENTITIES = (
        "users",
        "resumes",
        "analysis_results",
        "roadmap_items",
        "interviews",
        "interview_messages",
        "portfolios",
        "applications",
    )

    def __init__(self) -> None:
        self._users: dict[int, User] = {}
        self._resumes: dict[int, Resume] = {}
        self._analysis_results: dict[int, AnalysisResult] = {}
        self._roadmap_items: dict[int, RoadmapItem] = {}
        self._interviews: dict[int, Interview] = {}
        self._interview_messages: dict[int, InterviewMessage] = {}
        self._portfolios: dict[int, Portfolio] = {}
        self._applications: dict[int, Application] = {}
        self._current_id = {name: 1 for name in self._ENTITIES}
        self._lock = threading.Lock()

    def _next_id(self, entity: str) -> int:
        next_id = self._current_id[entity]
        self._current_id[entity] = next_id + 1
        return next_id

    # Users

    def create_user(self, username: str, password: str) -> User:
        with self._lock:
            if any(u.username == username for u in self._users.values()):
                raise ConflictError("Username already exists", field="username")
            user = User(id=self._next_id("users"), username=username, password=password)
            self._users[user.id] = user
            return user.model_copy()

    def get_user(self, user_id: int) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def get_user_by_username(self, username: str) -> User | None:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user.model_copy()
            return None

    # Resumes

    def create_resume(
        self,
        *,
        target_role: str,
        file_name: str,
        content: str = "",
        user_id: int | None = None,
    ) -> Resume:
        with self._lock:
            resume = Resume(
                id=self._next_id("resumes"),
                user_id=user_id,
                content=content,
                target_role=target_role,
                file_name=file_name,
            )
            self._resumes[resume.id] = resume
            return resume.model_copy()

    def get_resume(self, resume_id: int) -> Resume | None:
        with self._lock:
            resume = self._resumes.get(resume_id)
            return resume.model_copy() if resume else None

    def get_latest_resume(self) -> Resume | None:
        with self._lock:
            if not self._resumes:
                return None
            latest = max(self._resumes.values(), key=lambda r: (r.created_at, r.id))
            return latest.model_copy()

    def update_resume_status(self, resume_id: int, status: ResumeStatus) -> Resume | None:
        with self._lock:
            resume = self._resumes.get(resume_id)
            if resume is None:
                return None
            updated = resume.model_copy(update={"status": status})
            self._resumes[resume_id] = updated
            return updated.model_copy()

    # Analyses

    def create_analysis_result(self, resume_id: int, draft: AnalysisDraft) -> AnalysisResult:
        with self._lock:
            analysis = AnalysisResult(
                id=self._next_id("analysis_results"),
                resume_id=resume_id,
                **draft.model_dump(),
            )
            self._analysis_results[analysis.id] = analysis
            return analysis.model_copy(deep=True)

    def get_analysis_result_by_resume_id(self, resume_id: int) -> AnalysisResult | None:
        with self._lock:
            for analysis in self._analysis_results.values():
                if analysis.resume_id == resume_id:
                    return analysis.model_copy(deep=True)
            return None

    # Roadmap

    def create_roadmap_items(
        self, analysis_id: int, items: Iterable[RoadmapItemDraft]
    ) -> list[RoadmapItem]:
        created = []
        with self._lock:
            for draft in items:
                item = RoadmapItem(
                    id=self._next_id("roadmap_items"),
                    analysis_id=analysis_id,
                    **draft.model_dump(),
                )
                self._roadmap_items[item.id] = item
                created.append(item.model_copy())
        return created

    def get_roadmap_item(self, item_id: int) -> RoadmapItem | None:
        with self._lock:
            item = self._roadmap_items.get(item_id)
            return item.model_copy() if item else None

    def get_roadmap_items_by_analysis_id(self, analysis_id: int) -> list[RoadmapItem]:
        with self._lock:
            items = [i for i in self._roadmap_items.values() if i.analysis_id == analysis_id]
            return [i.model_copy() for i in sorted(items, key=lambda i: (i.order, i.id))]

    def update_roadmap_item_status(
        self, item_id: int, status: RoadmapStatus
    ) -> RoadmapItem | None:
        with self._lock:
            item = self._roadmap_items.get(item_id)
            if item is None:
                return None
            updated = item.model_copy(update={"status": status})
            self._roadmap_items[item_id] = updated
            return updated.model_copy()

    # Interviews

    def create_interview(self, resume_id: int, user_id: int) -> Interview:
        with self._lock:
            interview = Interview(
                id=self._next_id("interviews"), resume_id=resume_id, user_id=user_id
            )
            self._interviews[interview.id] = interview
            return interview.model_copy()

    def get_interview(self, interview_id: int) -> Interview | None:
        with self._lock:
            interview = self._interviews.get(interview_id)
            return interview.model_copy() if interview else None

    def create_interview_message(
        self, interview_id: int, role: MessageRole, content: str
    ) -> InterviewMessage:
        with self._lock:
            message = InterviewMessage(
                id=self._next_id("interview_messages"),
                interview_id=interview_id,
                role=role,
                content=content,
            )
            self._interview_messages[message.id] = message
            return message.model_copy()

    def get_interview_messages(self, interview_id: int) -> list[InterviewMessage]:
        with self._lock:
            messages = [
                m for m in self._interview_messages.values() if m.interview_id == interview_id
            ]
            messages.sort(key=lambda m: (m.created_at, m.id))
            return [m.model_copy() for m in messages]

    # Portfolios

    def create_portfolio(self, portfolio: PortfolioCreate) -> Portfolio:
        with self._lock:
            if any(p.domain == portfolio.domain for p in self._portfolios.values()):
                raise ConflictError("Portfolio domain already taken", field="domain")
            created = Portfolio(
                id=self._next_id("portfolios"),
                created_at=utcnow(),
                **portfolio.model_dump(),
            )
            self._portfolios[created.id] = created
            return created.model_copy(deep=True)

    def get_portfolio_by_user_id(self, user_id: int) -> Portfolio | None:
        with self._lock:
            for portfolio in self._portfolios.values():
                if portfolio.user_id == user_id:
                    return portfolio.model_copy(deep=True)
            return None

    def get_portfolio_by_domain(self, domain: str) -> Portfolio | None:
        with self._lock:
            for portfolio in self._portfolios.values():
                if portfolio.domain == domain:
                    return portfolio.model_copy(deep=True)
            return None

    # Applications

    def create_application(self, application: ApplicationCreate) -> Application:
        with self._lock:
            created = Application(id=self._next_id("applications"), **application.model_dump())
            self._applications[created.id] = created
            return created.model_copy()

    def get_applications(self, user_id: int) -> list[Application]:
        with self._lock:
            apps = [a for a in self._applications.values() if a.user_id == user_id]
            apps.sort(key=lambda a: (a.date, a.id), reverse=True)
            return [a.model_copy() for a in apps]
