from __future__ import annotations
import logging
from typing import Any, Iterable, List, Optional

import socketio
import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .config import Settings, load_settings
from .engine import QuizEngine
from .errors import ConflictError, NotFoundError, QuizError
from .exporter import results_to_csv
from .logging_config import configure_logging
from .models import (
    Connect,
    CreateHostPayload,
    CreateQuizPayload,
    Disconnect,
    Emit,
    Host,
    QuestionPayload,
)
from .storage import ResultStore

logger = logging.getLogger(__name__)

PLAYER_EVENTS = ("join", "requestNextQuestion", "submitAnswer", "getLeaderboard")


def create_app(settings: Optional[Settings] = None, store: Optional[ResultStore] = None) -> FastAPI:
    """FastAPI app with the socket.io server and quiz engine attached to app.state."""
    settings = settings or load_settings()
    store = store or ResultStore(settings.database_url)
    engine = QuizEngine(
        store,
        admission_mode=settings.admission_mode,
        join_code_length=settings.join_code_length,
        leaderboard_size=settings.leaderboard_size,
    )

    app = FastAPI(title="Live Quiz API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    cors: Any = "*" if settings.cors_origins == ["*"] else settings.cors_origins
    sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=cors)

    app.state.settings = settings
    app.state.store = store
    app.state.engine = engine
    app.state.sio = sio

    async def flush(effects: Iterable[Emit]) -> None:
        for out in effects:
            await sio.emit(out.event, out.data, to=out.to)

    async def handle_event(sid: str, event: str, data: Any = None) -> List[Emit]:
        effects = engine.dispatch(sid, event, data)
        await flush(effects)
        return effects

    app.state.handle_event = handle_event

    @app.exception_handler(QuizError)
    async def quiz_error_handler(request: Request, exc: QuizError):
        return await http_exception_handler(request, HTTPException(status_code=exc.status_code, detail=exc.message))

    # --- auth ---
    def require_admin(x_admin_token: str = Header(default="")):
        if not x_admin_token or x_admin_token != settings.admin_secret:
            raise HTTPException(status_code=401, detail="Unauthorized")

    def require_host(x_host_token: str = Header(default="")) -> Host:
        host = store.get_host_by_token(x_host_token)
        if host is None:
            raise HTTPException(status_code=403, detail="Forbidden")
        return host

    def owned_quiz(quiz_id: int, host: Host):
        quiz = store.get_quiz(quiz_id, host_id=host.id)
        if quiz is None:
            raise NotFoundError("Quiz not found.")
        return quiz

    # --- public ---
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/quiz/state")
    async def quiz_state():
        return engine.status()

    # --- super admin: hosts ---
    @app.get("/api/admin/hosts")
    async def list_hosts(_: None = Depends(require_admin)):
        return {"hosts": [{"id": h.id, "email": h.email} for h in store.list_hosts()]}

    @app.post("/api/admin/hosts", status_code=201)
    async def create_host(payload: CreateHostPayload, _: None = Depends(require_admin)):
        host = store.create_host(payload.email)
        return {"hostId": host.id, "token": host.token}

    @app.delete("/api/admin/hosts/{host_id}")
    async def delete_host(host_id: int, _: None = Depends(require_admin)):
        if engine.state.is_active and engine.state.host_id == host_id:
            raise ConflictError("This host is running the live quiz.")
        store.delete_host(host_id)
        return {"ok": True}

    # --- host: authoring ---
    @app.get("/api/host/quizzes")
    async def list_quizzes(host: Host = Depends(require_host)):
        return {"quizzes": [q.model_dump(mode="json") for q in store.list_quizzes(host.id)]}

    @app.post("/api/host/quizzes", status_code=201)
    async def create_quiz(payload: CreateQuizPayload, host: Host = Depends(require_host)):
        quiz = store.create_quiz(host.id, payload.name)
        return {"quizId": quiz.id}

    @app.delete("/api/host/quizzes/{quiz_id}")
    async def delete_quiz(quiz_id: int, host: Host = Depends(require_host)):
        owned_quiz(quiz_id, host)
        if engine.is_live(quiz_id):
            raise ConflictError("End the quiz before deleting it.")
        store.delete_quiz(quiz_id)
        return {"ok": True}

    @app.get("/api/host/quizzes/{quiz_id}")
    async def quiz_details(quiz_id: int, host: Host = Depends(require_host)):
        quiz = owned_quiz(quiz_id, host)
        questions = store.get_active_questions_ordered(quiz_id)
        return {
            "status": quiz.status.value,
            "joinCode": quiz.join_code,
            "playerCount": engine.player_count_for(host.id, quiz_id),
            "questions": [
                dict(q.to_player(), correctOptionIndex=q.correct_option_index) for q in questions
            ],
        }

    @app.post("/api/host/quizzes/{quiz_id}/questions", status_code=201)
    async def add_question(quiz_id: int, payload: QuestionPayload, host: Host = Depends(require_host)):
        owned_quiz(quiz_id, host)
        if engine.is_live(quiz_id):
            raise ConflictError("Questions cannot change while the quiz is live.")
        question = store.add_question(
            quiz_id,
            payload.text,
            payload.options,
            payload.correctOptionIndex,
            payload.timeLimit,
            payload.score,
            payload.negativeScore,
            payload.imageUrl,
        )
        return {"questionId": question.id}

    @app.delete("/api/host/questions/{question_id}")
    async def delete_question(question_id: int, host: Host = Depends(require_host)):
        question = store.get_question(question_id)
        if question is None:
            raise NotFoundError("Question not found.")
        owned_quiz(question.quiz_id, host)
        if engine.is_live(question.quiz_id):
            raise ConflictError("Questions cannot change while the quiz is live.")
        store.delete_question(question_id)
        return {"ok": True}

    # --- host: session control ---
    @app.post("/api/host/quizzes/{quiz_id}/start")
    async def start_quiz(quiz_id: int, host: Host = Depends(require_host)):
        await flush(engine.start_quiz(host.id, quiz_id))
        return {"ok": True, "joinCode": engine.state.join_code}

    @app.post("/api/host/quizzes/{quiz_id}/launch")
    async def launch_quiz(quiz_id: int, host: Host = Depends(require_host)):
        if engine.state.is_active and not engine.is_live(quiz_id):
            raise NotFoundError("This quiz is not live.")
        await flush(engine.launch_quiz(host.id))
        return {"ok": True}

    @app.post("/api/host/end")
    async def end_quiz(host: Host = Depends(require_host)):
        await flush(engine.end_quiz(host.id))
        return {"ok": True}

    @app.get("/api/host/quizzes/{quiz_id}/results.csv")
    async def export_results(quiz_id: int, host: Host = Depends(require_host)):
        owned_quiz(quiz_id, host)
        body = results_to_csv(store.get_active_questions_ordered(quiz_id), store.get_results(quiz_id))
        return Response(
            content=body,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="quiz_{quiz_id}_results_detailed.csv"'},
        )

    # --- socket.io ---
    @sio.event
    async def connect(sid, environ, auth=None):
        logger.info("Client connected %s", sid)
        await flush(engine.handle(sid, Connect()))

    @sio.event
    async def disconnect(sid, reason=None):
        logger.info("Client disconnected %s", sid)
        await flush(engine.handle(sid, Disconnect()))

    def _player_handler(event: str):
        async def handler(sid, data=None):
            await handle_event(sid, event, data)

        return handler

    for event in PLAYER_EVENTS:
        sio.on(event, handler=_player_handler(event))

    return app


def create_asgi_app(settings: Optional[Settings] = None, store: Optional[ResultStore] = None) -> socketio.ASGIApp:
    settings = settings or load_settings()
    app = create_app(settings, store)
    # HTTP and Socket.IO share the same server
    return socketio.ASGIApp(app.state.sio, other_asgi_app=app, socketio_path=settings.socketio_path)


def build_asgi_app() -> socketio.ASGIApp:
    """Factory for `uvicorn --factory livequiz.main:build_asgi_app`."""
    settings = load_settings()
    configure_logging(settings.log_level)
    return create_asgi_app(settings)


def run() -> None:
    settings = load_settings()
    log = configure_logging(settings.log_level)
    log.info("Starting live quiz server on %s:%s", settings.host, settings.port)
    uvicorn.run(create_asgi_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
