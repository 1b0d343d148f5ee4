"""SQLAlchemy-backed implementation of the Store interface."""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

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
from career_coach_api.store import Store

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for all ORM rows."""


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)


class ResumeRow(Base):
    __tablename__ = "resumes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(Integer)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    target_role: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending_analysis")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AnalysisResultRow(Base):
    __tablename__ = "analysis_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    resume_id: Mapped[int] = mapped_column(ForeignKey("resumes.id"), nullable=False)
    readiness_score: Mapped[int] = mapped_column(Integer, nullable=False)
    ats_score: Mapped[int] = mapped_column(Integer, nullable=False)
    resume_quality: Mapped[int] = mapped_column(Integer, default=0)
    skill_match: Mapped[int] = mapped_column(Integer, default=0)
    project_strength: Mapped[int] = mapped_column(Integer, default=0)
    interview_readiness: Mapped[int] = mapped_column(Integer, default=0)
    feedback: Mapped[str] = mapped_column(Text, default="")
    rewritten_content: Mapped[str] = mapped_column(Text, nullable=False)
    analysis_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    strengths: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    gaps: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class RoadmapItemRow(Base):
    __tablename__ = "roadmap_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    analysis_id: Mapped[int] = mapped_column(ForeignKey("analysis_results.id"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    order: Mapped[int] = mapped_column("order", Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class InterviewRow(Base):
    __tablename__ = "interviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    resume_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int | None] = mapped_column(Integer)
    feedback: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class InterviewMessageRow(Base):
    __tablename__ = "interview_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    interview_id: Mapped[int] = mapped_column(ForeignKey("interviews.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PortfolioRow(Base):
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    domain: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    bio: Mapped[str | None] = mapped_column(Text)
    projects: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    theme: Mapped[str] = mapped_column(String(32), default="minimal")
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ApplicationRow(Base):
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Applied")
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    notes: Mapped[str | None] = mapped_column(Text)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with SQLite-friendly options.

    An in-memory SQLite URL gets a single shared connection, otherwise every
    session would see its own empty database.
    """
    is_sqlite = database_url.startswith("sqlite")
    kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)

    if is_sqlite:

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return engine


def _user(row: UserRow) -> User:
    return User(id=row.id, username=row.username, password=row.password)


def _resume(row: ResumeRow) -> Resume:
    return Resume(
        id=row.id,
        user_id=row.user_id,
        content=row.content,
        target_role=row.target_role,
        file_name=row.file_name,
        status=row.status,
        created_at=row.created_at,
    )


def _analysis(row: AnalysisResultRow) -> AnalysisResult:
    return AnalysisResult(
        id=row.id,
        resume_id=row.resume_id,
        readiness_score=row.readiness_score,
        ats_score=row.ats_score,
        resume_quality=row.resume_quality,
        skill_match=row.skill_match,
        project_strength=row.project_strength,
        interview_readiness=row.interview_readiness,
        feedback=row.feedback,
        rewritten_content=row.rewritten_content,
        analysis_data=row.analysis_data or {},
        strengths=list(row.strengths),
        gaps=list(row.gaps),
        created_at=row.created_at,
    )


def _roadmap_item(row: RoadmapItemRow) -> RoadmapItem:
    return RoadmapItem(
        id=row.id,
        analysis_id=row.analysis_id,
        title=row.title,
        description=row.description,
        category=row.category,
        status=row.status,
        order=row.order,
        created_at=row.created_at,
    )


def _interview(row: InterviewRow) -> Interview:
    return Interview(
        id=row.id,
        resume_id=row.resume_id,
        user_id=row.user_id,
        score=row.score,
        feedback=row.feedback,
        created_at=row.created_at,
    )


def _message(row: InterviewMessageRow) -> InterviewMessage:
    return InterviewMessage(
        id=row.id,
        interview_id=row.interview_id,
        role=row.role,
        content=row.content,
        created_at=row.created_at,
    )


def _portfolio(row: PortfolioRow) -> Portfolio:
    return Portfolio(
        id=row.id,
        user_id=row.user_id,
        domain=row.domain,
        bio=row.bio,
        projects=list(row.projects or []),
        theme=row.theme,
        is_public=row.is_public,
        created_at=row.created_at,
    )


def _application(row: ApplicationRow) -> Application:
    return Application(
        id=row.id,
        user_id=row.user_id,
        role=row.role,
        company=row.company,
        status=row.status,
        notes=row.notes,
        date=row.date,
    )


class SqlStore(Store):
    """Store backed by a relational database through SQLAlchemy sessions.

    Every operation runs in its own short session and commits before
    returning, matching the one-call-one-write behaviour of the memory store.
    """

    def __init__(self, engine: Engine, create_tables: bool = True):
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            future=True,
            expire_on_commit=False,
            autoflush=False,
        )
        if create_tables:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "SqlStore":
        logger.info("Opening database store", url=database_url.split("@")[-1])
        return cls(create_db_engine(database_url))

    def close(self) -> None:
        self._engine.dispose()

    # Users

    def create_user(self, username: str, password: str) -> User:
        with self._session_factory() as session:
            row = UserRow(username=username, password=password)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConflictError("Username already exists", field="username") from e
            return _user(row)

    def get_user(self, user_id: int) -> User | None:
        with self._session_factory() as session:
            row = session.get(UserRow, user_id)
            return _user(row) if row else None

    def get_user_by_username(self, username: str) -> User | None:
        with self._session_factory() as session:
            row = session.scalars(select(UserRow).where(UserRow.username == username)).first()
            return _user(row) if row else None

    # Resumes

    def create_resume(
        self,
        *,
        target_role: str,
        file_name: str,
        content: str = "",
        user_id: int | None = None,
    ) -> Resume:
        with self._session_factory() as session:
            row = ResumeRow(
                user_id=user_id,
                content=content,
                target_role=target_role,
                file_name=file_name,
                status="pending_analysis",
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            return _resume(row)

    def get_resume(self, resume_id: int) -> Resume | None:
        with self._session_factory() as session:
            row = session.get(ResumeRow, resume_id)
            return _resume(row) if row else None

    def get_latest_resume(self) -> Resume | None:
        with self._session_factory() as session:
            stmt = select(ResumeRow).order_by(ResumeRow.created_at.desc(), ResumeRow.id.desc())
            row = session.scalars(stmt.limit(1)).first()
            return _resume(row) if row else None

    def update_resume_status(self, resume_id: int, status: ResumeStatus) -> Resume | None:
        with self._session_factory() as session:
            row = session.get(ResumeRow, resume_id)
            if row is None:
                return None
            row.status = status
            session.commit()
            return _resume(row)

    # Analyses

    def create_analysis_result(self, resume_id: int, draft: AnalysisDraft) -> AnalysisResult:
        with self._session_factory() as session:
            row = AnalysisResultRow(resume_id=resume_id, created_at=utcnow(), **draft.model_dump())
            session.add(row)
            session.commit()
            return _analysis(row)

    def get_analysis_result_by_resume_id(self, resume_id: int) -> AnalysisResult | None:
        with self._session_factory() as session:
            stmt = (
                select(AnalysisResultRow)
                .where(AnalysisResultRow.resume_id == resume_id)
                .order_by(AnalysisResultRow.id)
            )
            row = session.scalars(stmt).first()
            return _analysis(row) if row else None

    # Roadmap

    def create_roadmap_items(
        self, analysis_id: int, items: Iterable[RoadmapItemDraft]
    ) -> list[RoadmapItem]:
        with self._session_factory() as session:
            rows = [
                RoadmapItemRow(analysis_id=analysis_id, created_at=utcnow(), **draft.model_dump())
                for draft in items
            ]
            if not rows:
                return []
            session.add_all(rows)
            session.commit()
            return [_roadmap_item(row) for row in rows]

    def get_roadmap_item(self, item_id: int) -> RoadmapItem | None:
        with self._session_factory() as session:
            row = session.get(RoadmapItemRow, item_id)
            return _roadmap_item(row) if row else None

    def get_roadmap_items_by_analysis_id(self, analysis_id: int) -> list[RoadmapItem]:
        with self._session_factory() as session:
            stmt = (
                select(RoadmapItemRow)
                .where(RoadmapItemRow.analysis_id == analysis_id)
                .order_by(RoadmapItemRow.order, RoadmapItemRow.id)
            )
            return [_roadmap_item(row) for row in session.scalars(stmt)]

    def update_roadmap_item_status(
        self, item_id: int, status: RoadmapStatus
    ) -> RoadmapItem | None:
        with self._session_factory() as session:
            row = session.get(RoadmapItemRow, item_id)
            if row is None:
                return None
            row.status = status
            session.commit()
            return _roadmap_item(row)

    # Interviews

    def create_interview(self, resume_id: int, user_id: int) -> Interview:
        with self._session_factory() as session:
            row = InterviewRow(resume_id=resume_id, user_id=user_id, created_at=utcnow())
            session.add(row)
            session.commit()
            return _interview(row)

    def get_interview(self, interview_id: int) -> Interview | None:
        with self._session_factory() as session:
            row = session.get(InterviewRow, interview_id)
            return _interview(row) if row else None

    def create_interview_message(
        self, interview_id: int, role: MessageRole, content: str
    ) -> InterviewMessage:
        with self._session_factory() as session:
            row = InterviewMessageRow(
                interview_id=interview_id, role=role, content=content, created_at=utcnow()
            )
            session.add(row)
            session.commit()
            return _message(row)

    def get_interview_messages(self, interview_id: int) -> list[InterviewMessage]:
        with self._session_factory() as session:
            stmt = (
                select(InterviewMessageRow)
                .where(InterviewMessageRow.interview_id == interview_id)
                .order_by(InterviewMessageRow.created_at, InterviewMessageRow.id)
            )
            return [_message(row) for row in session.scalars(stmt)]

    # Portfolios

    def create_portfolio(self, portfolio: PortfolioCreate) -> Portfolio:
        with self._session_factory() as session:
            row = PortfolioRow(created_at=utcnow(), **portfolio.model_dump())
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConflictError("Portfolio domain already taken", field="domain") from e
            return _portfolio(row)

    def get_portfolio_by_user_id(self, user_id: int) -> Portfolio | None:
        with self._session_factory() as session:
            stmt = select(PortfolioRow).where(PortfolioRow.user_id == user_id)
            row = session.scalars(stmt).first()
            return _portfolio(row) if row else None

    def get_portfolio_by_domain(self, domain: str) -> Portfolio | None:
        with self._session_factory() as session:
            stmt = select(PortfolioRow).where(PortfolioRow.domain == domain)
            row = session.scalars(stmt).first()
            return _portfolio(row) if row else None

    # Applications

    def create_application(self, application: ApplicationCreate) -> Application:
        with self._session_factory() as session:
            row = ApplicationRow(date=utcnow(), **application.model_dump())
            session.add(row)
            session.commit()
            return _application(row)

    def get_applications(self, user_id: int) -> list[Application]:
        with self._session_factory() as session:
            stmt = (
                select(ApplicationRow)
                .where(ApplicationRow.user_id == user_id)
                .order_by(ApplicationRow.date.desc(), ApplicationRow.id.desc())
            )
            return [_application(row) for row in session.scalars(stmt)]
