"""Domain exceptions shared by the guard, the lesson routes and the CLI."""


class UnauthorizedError(Exception):
    """The session carries no user_id for a guarded endpoint."""

    status_code = 401

    def __init__(self, endpoint: str | None = None):
        self.endpoint = endpoint
        super().__init__(f"Unauthorized request to {endpoint or 'endpoint'}")

    def to_dict(self) -> dict:
        return {"error": "Unauthorized"}


class LessonNotFoundError(LookupError):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Lesson not found: {slug}")
