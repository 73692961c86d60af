"""Errors raised by the quiz engine.

Every error carries a message that is safe to show to the player or host
that triggered it, and the HTTP status the host API answers with.
"""

from __future__ import annotations


class QuizError(Exception):
    status_code = 400
    default_message = "Request failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConflictError(QuizError):
    status_code = 409
    default_message = "Another quiz is already active on the server."


class ForbiddenError(QuizError):
    status_code = 403
    default_message = "Forbidden."


class ValidationError(QuizError):
    status_code = 422
    default_message = "Invalid request."


class NotActiveError(QuizError):
    status_code = 409
    default_message = "No quiz is active. Please wait for the host."


class InvalidCodeError(QuizError):
    status_code = 403
    default_message = "Invalid Join Code."


class NameTakenError(QuizError):
    status_code = 409
    default_message = "This name is already taken for this quiz."


class NotFoundError(QuizError):
    status_code = 404
    default_message = "Not found."


class InvalidTransitionError(QuizError):
    status_code = 409
    default_message = "Illegal quiz status change."


class PersistenceError(QuizError):
    status_code = 500
    default_message = "Could not save your answer. Please try again."
