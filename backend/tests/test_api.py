import asyncio

import pytest
from fastapi.testclient import TestClient

from livequiz.config import Settings
from livequiz.main import create_app

ADMIN = {"X-Admin-Token": "secret"}


@pytest.fixture
def app(store):
    settings = Settings(database_url="sqlite://", admin_secret="secret")
    return create_app(settings, store)


@pytest.fixture
def emitted(app, monkeypatch):
    sent = []

    async def record(event, data=None, to=None, **kwargs):
        sent.append((event, data, to))

    monkeypatch.setattr(app.state.sio, "emit", record)
    return sent


@pytest.fixture
def client(app):
    return TestClient(app)


def make_host(client, email="host@example.com"):
    res = client.post("/api/admin/hosts", json={"email": email}, headers=ADMIN)
    assert res.status_code == 201
    return {"X-Host-Token": res.json()["token"]}


def make_quiz(client, headers, name="Quiz", questions=1):
    quiz_id = client.post("/api/host/quizzes", json={"name": name}, headers=headers).json()["quizId"]
    for i in range(questions):
        res = client.post(
            f"/api/host/quizzes/{quiz_id}/questions",
            json={"text": f"Q{i}?", "options": ["A", "B", "C"], "correctOptionIndex": 1, "score": 10, "negativeScore": 5},
            headers=headers,
        )
        assert res.status_code == 201
    return quiz_id


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_admin_requires_token(client):
    assert client.get("/api/admin/hosts").status_code == 401
    assert client.post("/api/admin/hosts", json={"email": "a@b.c"}, headers={"X-Admin-Token": "bad"}).status_code == 401


def test_host_requires_token(client):
    assert client.get("/api/host/quizzes").status_code == 403
    assert client.get("/api/host/quizzes", headers={"X-Host-Token": "nope"}).status_code == 403


def test_authoring(client):
    headers = make_host(client)
    quiz_id = make_quiz(client, headers, questions=2)

    assert client.post("/api/host/quizzes", json={"name": "Quiz"}, headers=headers).status_code == 409
    bad = {"text": "?", "options": ["A", "B"], "correctOptionIndex": 5}
    assert client.post(f"/api/host/quizzes/{quiz_id}/questions", json=bad, headers=headers).status_code == 422

    details = client.get(f"/api/host/quizzes/{quiz_id}", headers=headers).json()
    assert details["status"] == "waiting"
    assert details["joinCode"] is None
    assert details["playerCount"] == 0
    assert [q["text"] for q in details["questions"]] == ["Q0?", "Q1?"]

    qid = details["questions"][0]["id"]
    assert client.delete(f"/api/host/questions/{qid}", headers=headers).json() == {"ok": True}
    assert len(client.get(f"/api/host/quizzes/{quiz_id}", headers=headers).json()["questions"]) == 1

    listed = client.get("/api/host/quizzes", headers=headers).json()["quizzes"]
    assert [q["id"] for q in listed] == [quiz_id]


def test_quizzes_are_private_to_their_host(client):
    alice = make_host(client, "alice@example.com")
    bob = make_host(client, "bob@example.com")
    quiz_id = make_quiz(client, alice)
    assert client.get(f"/api/host/quizzes/{quiz_id}", headers=bob).status_code == 404
    assert client.post(f"/api/host/quizzes/{quiz_id}/start", headers=bob).status_code == 404


def test_start_and_end_over_http(client, app, emitted):
    headers = make_host(client)
    quiz_id = make_quiz(client, headers)

    res = client.post(f"/api/host/quizzes/{quiz_id}/start", headers=headers)
    assert res.status_code == 200
    code = res.json()["joinCode"]
    assert len(code) == 6
    assert [e[0] for e in emitted] == ["quizStarted", "leaderboardUpdate"]
    assert client.get("/api/quiz/state").json() == {"status": "active", "quizName": "Quiz", "playerCount": 0}
    assert client.get(f"/api/host/quizzes/{quiz_id}", headers=headers).json()["joinCode"] == code

    # questions are frozen while live
    extra = {"text": "late?", "options": ["A", "B"], "correctOptionIndex": 0}
    assert client.post(f"/api/host/quizzes/{quiz_id}/questions", json=extra, headers=headers).status_code == 409
    assert client.delete(f"/api/host/quizzes/{quiz_id}", headers=headers).status_code == 409

    assert client.post("/api/host/end", headers=headers).json() == {"ok": True}
    assert client.get("/api/quiz/state").json()["status"] == "waiting"
    res = client.post("/api/host/end", headers=headers)
    assert res.status_code == 409
    assert res.json()["detail"] == "No active quiz for this host."


def test_global_lock_across_hosts(client, emitted):
    alice = make_host(client, "alice@example.com")
    bob = make_host(client, "bob@example.com")
    a_quiz = make_quiz(client, alice)
    b_quiz = make_quiz(client, bob)

    assert client.post(f"/api/host/quizzes/{a_quiz}/start", headers=alice).status_code == 200
    emitted.clear()
    res = client.post(f"/api/host/quizzes/{b_quiz}/start", headers=bob)
    assert res.status_code == 409
    assert emitted == []
    assert client.post("/api/host/end", headers=bob).status_code == 403
    assert client.delete("/api/admin/hosts/1", headers=ADMIN).status_code == 409


def test_empty_quiz_cannot_start(client):
    headers = make_host(client)
    quiz_id = make_quiz(client, headers, questions=0)
    res = client.post(f"/api/host/quizzes/{quiz_id}/start", headers=headers)
    assert res.status_code == 422
    assert res.json() == {"detail": "This quiz has no questions."}


def test_socket_round_and_csv_export(client, app, emitted):
    headers = make_host(client)
    quiz_id = make_quiz(client, headers, questions=2)
    code = client.post(f"/api/host/quizzes/{quiz_id}/start", headers=headers).json()["joinCode"]
    emitted.clear()
    handle = app.state.handle_event

    async def play():
        await handle("sid-1", "join", {"name": "Alice", "branch": "CSE", "year": "2", "joinCode": code})
        await handle("sid-1", "requestNextQuestion", {})
        await handle("sid-1", "submitAnswer", {"optionIndex": 1})
        await handle("sid-1", "requestNextQuestion", {})
        await handle("sid-1", "submitAnswer", {"optionIndex": None})
        await handle("sid-2", "join", {"name": "ALICE", "joinCode": code})

    asyncio.run(play())

    names = [e[0] for e in emitted]
    assert names[:2] == ["playerCount", "quizStarted"]
    results = [e for e in emitted if e[0] == "answerResult"]
    assert [r[1]["score"] for r in results] == [10, 5]
    assert all(r[2] == "sid-1" for r in results)
    assert emitted[-1] == ("error", {"message": "This name is already taken for this quiz."}, "sid-2")

    details = client.get(f"/api/host/quizzes/{quiz_id}", headers=headers).json()
    assert details["playerCount"] == 1

    res = client.get(f"/api/host/quizzes/{quiz_id}/results.csv", headers=headers)
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    lines = res.text.strip().split("\n")
    assert lines[0] == "Name,Branch,Year,Total Score,Q1: Q0?,Q2: Q1?"
    assert lines[1] == "Alice,CSE,2,5,Correct,NO ANSWER"
