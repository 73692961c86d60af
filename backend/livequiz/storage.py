"""Durable storage for hosts, quizzes, questions and per-player results."""

from __future__ import annotations
import logging
import secrets
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    select,
    update,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import ConflictError, NotFoundError, PersistenceError
from .models import Host, LeaderboardEntry, Question, Quiz, QuizStatus, ResultRow

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class HostRecord(Base):
    __tablename__ = "hosts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    quizzes: Mapped[List["QuizRecord"]] = relationship(back_populates="host", cascade="all, delete-orphan")


class QuizRecord(Base):
    __tablename__ = "quizzes"
    __table_args__ = (UniqueConstraint("host_id", "name", name="uq_quiz_host_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    host_id: Mapped[int] = mapped_column(ForeignKey("hosts.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default=QuizStatus.WAITING.value)
    join_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    host: Mapped["HostRecord"] = relationship(back_populates="quizzes")
    questions: Mapped[List["QuestionRecord"]] = relationship(cascade="all, delete-orphan", order_by="QuestionRecord.id")
    results: Mapped[List["ResultRecord"]] = relationship(cascade="all, delete-orphan")


class QuestionRecord(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id", ondelete="CASCADE"), index=True)
    text: Mapped[str] = mapped_column(Text)
    options: Mapped[List[str]] = mapped_column(JSON)
    correct_option_index: Mapped[int] = mapped_column(Integer)
    time_limit: Mapped[int] = mapped_column(Integer)
    score: Mapped[int] = mapped_column(Integer)
    negative_score: Mapped[int] = mapped_column(Integer)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


class ResultRecord(Base):
    __tablename__ = "results"
    __table_args__ = (UniqueConstraint("quiz_id", "name", name="uq_result_quiz_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    branch: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    year: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    score: Mapped[int] = mapped_column(Integer)
    finish_time: Mapped[int] = mapped_column(BigInteger)
    # question id (as string, JSON object keys) -> chosen option index or null
    answers: Mapped[Dict[str, Optional[int]]] = mapped_column(JSON, default=dict)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _to_quiz(row: QuizRecord) -> Quiz:
    return Quiz(id=row.id, host_id=row.host_id, name=row.name, status=QuizStatus(row.status), join_code=row.join_code)


def _to_question(row: QuestionRecord) -> Question:
    return Question(
        id=row.id,
        quiz_id=row.quiz_id,
        text=row.text,
        options=list(row.options or []),
        correct_option_index=row.correct_option_index,
        time_limit=row.time_limit,
        score=row.score,
        negative_score=row.negative_score,
        image_url=row.image_url,
    )


class ResultStore:
    """SQLite-backed store. Every public call runs in its own transaction."""

    def __init__(self, database_url: str, echo: bool = False):
        kwargs: Dict = {"echo": echo}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()

    # --- hosts ---
    def create_host(self, email: str) -> Host:
        email = email.strip().lower()
        try:
            with self._session() as s:
                row = HostRecord(email=email, token=secrets.token_hex(16))
                s.add(row)
                s.flush()
                host = Host(id=row.id, email=row.email, token=row.token)
        except IntegrityError as exc:
            raise ConflictError("Email already exists.") from exc
        logger.info("Created host %s (%s)", host.id, host.email)
        return host

    def list_hosts(self) -> List[Host]:
        with self._session() as s:
            rows = s.scalars(select(HostRecord).order_by(HostRecord.id)).all()
            return [Host(id=r.id, email=r.email, token=r.token) for r in rows]

    def get_host_by_token(self, token: str) -> Optional[Host]:
        if not token:
            return None
        with self._session() as s:
            row = s.scalar(select(HostRecord).where(HostRecord.token == token))
            return Host(id=row.id, email=row.email, token=row.token) if row else None

    def delete_host(self, host_id: int) -> None:
        with self._session() as s:
            row = s.get(HostRecord, host_id)
            if row is None:
                raise NotFoundError("Host not found.")
            s.delete(row)

    # --- quizzes & questions (authoring boundary) ---
    def create_quiz(self, host_id: int, name: str) -> Quiz:
        try:
            with self._session() as s:
                row = QuizRecord(host_id=host_id, name=name, status=QuizStatus.WAITING.value)
                s.add(row)
                s.flush()
                quiz = _to_quiz(row)
        except IntegrityError as exc:
            raise ConflictError("A quiz with this name already exists.") from exc
        return quiz

    def list_quizzes(self, host_id: int) -> List[Quiz]:
        with self._session() as s:
            rows = s.scalars(select(QuizRecord).where(QuizRecord.host_id == host_id).order_by(QuizRecord.id.desc())).all()
            return [_to_quiz(r) for r in rows]

    def get_quiz(self, quiz_id: int, host_id: Optional[int] = None) -> Optional[Quiz]:
        try:
            with self._session() as s:
                row = s.get(QuizRecord, quiz_id)
                if row is None or (host_id is not None and row.host_id != host_id):
                    return None
                return _to_quiz(row)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load quiz %s", quiz_id)
            raise PersistenceError("Could not load the quiz.") from exc

    def delete_quiz(self, quiz_id: int) -> None:
        with self._session() as s:
            row = s.get(QuizRecord, quiz_id)
            if row is not None:
                s.delete(row)

    def add_question(
        self,
        quiz_id: int,
        text: str,
        options: List[str],
        correct_option_index: int,
        time_limit: int,
        score: int,
        negative_score: int,
        image_url: Optional[str] = None,
    ) -> Question:
        with self._session() as s:
            row = QuestionRecord(
                quiz_id=quiz_id,
                text=text,
                options=list(options),
                correct_option_index=correct_option_index,
                time_limit=time_limit,
                score=score,
                negative_score=negative_score,
                image_url=image_url,
            )
            s.add(row)
            s.flush()
            return _to_question(row)

    def get_question(self, question_id: int) -> Optional[Question]:
        with self._session() as s:
            row = s.get(QuestionRecord, question_id)
            return _to_question(row) if row else None

    def delete_question(self, question_id: int) -> None:
        with self._session() as s:
            s.execute(delete(QuestionRecord).where(QuestionRecord.id == question_id))

    def get_active_questions_ordered(self, quiz_id: int) -> List[Question]:
        """Questions of a quiz in creation order (ascending id)."""
        try:
            with self._session() as s:
                rows = s.scalars(select(QuestionRecord).where(QuestionRecord.quiz_id == quiz_id).order_by(QuestionRecord.id.asc())).all()
                return [_to_question(r) for r in rows]
        except SQLAlchemyError as exc:
            logger.exception("Failed to load questions of quiz %s", quiz_id)
            raise PersistenceError("Could not load the quiz questions.") from exc

    # --- status ---
    def set_quiz_status(self, quiz_id: int, status: QuizStatus, join_code: Optional[str] = None) -> None:
        try:
            with self._session() as s:
                s.execute(
                    update(QuizRecord).where(QuizRecord.id == quiz_id).values(status=QuizStatus(status).value, join_code=join_code)
                )
        except SQLAlchemyError as exc:
            logger.exception("Failed to set status of quiz %s", quiz_id)
            raise PersistenceError("Could not update the quiz status.") from exc

    def activate_quiz(self, host_id: int, quiz_id: int, join_code: str) -> None:
        """Reset the host's quizzes, mark one active and wipe its results, in one transaction."""
        try:
            with self._session() as s:
                s.execute(
                    update(QuizRecord)
                    .where(QuizRecord.host_id == host_id)
                    .values(status=QuizStatus.WAITING.value, join_code=None)
                )
                s.execute(
                    update(QuizRecord)
                    .where(QuizRecord.id == quiz_id)
                    .values(status=QuizStatus.ACTIVE.value, join_code=join_code)
                )
                s.execute(delete(ResultRecord).where(ResultRecord.quiz_id == quiz_id))
        except SQLAlchemyError as exc:
            logger.exception("Failed to activate quiz %s", quiz_id)
            raise PersistenceError("Could not start the quiz.") from exc

    # --- results ---
    def clear_results(self, quiz_id: int) -> None:
        with self._session() as s:
            s.execute(delete(ResultRecord).where(ResultRecord.quiz_id == quiz_id))

    def upsert_result(
        self,
        quiz_id: int,
        name: str,
        branch: Optional[str],
        year: Optional[str],
        score: int,
        timestamp: int,
        answers: Dict[int, Optional[int]],
    ) -> None:
        """Insert or update the (quiz_id, name) row as one statement."""
        payload = {str(qid): idx for qid, idx in answers.items()}
        stmt = sqlite_insert(ResultRecord).values(
            quiz_id=quiz_id,
            name=name,
            branch=branch,
            year=year,
            score=score,
            finish_time=timestamp,
            answers=payload,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ResultRecord.quiz_id, ResultRecord.name],
            set_={
                "branch": stmt.excluded.branch,
                "year": stmt.excluded.year,
                "score": stmt.excluded.score,
                "finish_time": stmt.excluded.finish_time,
                "answers": stmt.excluded.answers,
            },
        )
        try:
            with self._session() as s:
                s.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to save result for %s in quiz %s", name, quiz_id)
            raise PersistenceError() from exc

    def has_result(self, quiz_id: int, name: str) -> bool:
        """Whether a result is saved under this name (case-insensitive) for the quiz."""
        try:
            with self._session() as s:
                found = s.scalar(
                    select(ResultRecord.id)
                    .where(ResultRecord.quiz_id == quiz_id, func.lower(ResultRecord.name) == name.lower())
                    .limit(1)
                )
        except SQLAlchemyError as exc:
            logger.exception("Failed to look up result for %s in quiz %s", name, quiz_id)
            raise PersistenceError("Could not check your name. Please try again.") from exc
        return found is not None

    def get_results(self, quiz_id: int) -> List[ResultRow]:
        """All results for a quiz, highest score first."""
        with self._session() as s:
            rows = s.scalars(
                select(ResultRecord)
                .where(ResultRecord.quiz_id == quiz_id)
                .order_by(ResultRecord.score.desc(), ResultRecord.finish_time.asc(), ResultRecord.id.asc())
            ).all()
            return [
                ResultRow(
                    name=r.name,
                    branch=r.branch,
                    year=r.year,
                    score=r.score,
                    finish_time=r.finish_time,
                    answers={int(k): v for k, v in (r.answers or {}).items()},
                )
                for r in rows
            ]

    def top_results(self, quiz_id: int, limit: int = 20) -> List[LeaderboardEntry]:
        with self._session() as s:
            rows = s.execute(
                select(ResultRecord.name, ResultRecord.score)
                .where(ResultRecord.quiz_id == quiz_id)
                .order_by(ResultRecord.score.desc(), ResultRecord.finish_time.asc(), ResultRecord.id.asc())
                .limit(limit)
            ).all()
            return [LeaderboardEntry(name=name, score=score) for name, score in rows]
