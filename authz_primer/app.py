import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field

from . import __version__
from .checks import check_code_blocks, check_consistency, check_disclosures, check_links
from .config import Settings, configure_logging, load_settings
from .constants import DEFAULT_SEARCH_LIMIT, MAX_USERNAME_LENGTH, SESSION_USER_KEY, SEVERITY_ERROR, TEMPLATES_DIR
from .db import get_user_by_username, init_db, seed_demo_data, session_scope
from .documents import router as documents_router
from .errors import LessonNotFoundError, UnauthorizedError
from .guard import current_session, session_id_from
from .lesson import Lesson, load_lessons
from .models import User
from .render import render_lesson
from .search import rebuild_index, search_lessons
from .sessions import SessionManager

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=TEMPLATES_DIR)


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=MAX_USERNAME_LENGTH)


def _load_lessons(settings: Settings) -> Dict[str, Lesson]:
    try:
        lessons = load_lessons(settings.lessons_dir)
    except FileNotFoundError:
        logger.error("Lessons directory %s does not exist; serving no lessons", settings.lessons_dir)
        return {}
    logger.info("Loaded %d lessons from %s", len(lessons), settings.lessons_dir)
    return {lesson.slug: lesson for lesson in lessons}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application. Settings are loaded from the environment at startup when not given."""

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        """Manage application lifecycle (startup and shutdown events)."""
        app_settings = settings or load_settings()
        configure_logging(app_settings)
        logger.info("Starting authz_primer %s", __version__)

        app_instance.state.settings = app_settings
        app_instance.state.session_manager = SessionManager(app_settings.session_expiry_seconds)
        app_instance.state.engine = init_db(app_settings.database_url)

        if app_settings.seed_demo_data:
            try:
                seed_demo_data(app_instance.state.engine)
            except Exception:
                logger.exception("Failed to seed demo data")

        app_instance.state.lessons = _load_lessons(app_settings)
        try:
            rebuild_index(list(app_instance.state.lessons.values()), app_settings.index_dir)
        except Exception:
            logger.exception("Failed to build search index, search will return no results")

        logger.info("Login check exempts endpoints: %s", sorted(app_settings.exempt_endpoint_set))

        yield

        logger.info("Shutting down authz_primer")
        app_instance.state.engine.dispose()

    app = FastAPI(title="authz_primer", description="Authorization lessons and a guarded demo API", version=__version__, lifespan=lifespan)

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(LessonNotFoundError)
    async def lesson_not_found_handler(request: Request, exc: LessonNotFoundError):
        return JSONResponse({"detail": str(exc)}, status_code=404)

    app.include_router(documents_router)
    _register_lesson_routes(app)
    _register_session_routes(app)
    return app


def _get_lesson(request: Request, slug: str) -> Lesson:
    lesson = request.app.state.lessons.get(slug)
    if lesson is None:
        raise LessonNotFoundError(slug)
    return lesson


def _register_lesson_routes(app: FastAPI) -> None:

    @app.get("/health", tags=["health"])
    def health() -> Dict[str, Any]:
        return {"status": "ok", "lessons": len(app.state.lessons)}

    @app.get("/", response_class=HTMLResponse, tags=["ui"])
    def index(request: Request):
        """Lesson index page."""
        return templates.TemplateResponse(request, "index.html", {"lessons": list(request.app.state.lessons.values()), "standalone": False})

    @app.get("/lessons", tags=["lessons"])
    def list_lessons(request: Request):
        return [
            {
                "slug": lesson.slug,
                "title": lesson.title,
                "sections": [{"level": h.level, "title": h.title, "anchor": h.anchor} for h in lesson.headings],
            }
            for lesson in request.app.state.lessons.values()
        ]

    @app.get("/lessons/{slug}", response_class=HTMLResponse, tags=["lessons"])
    def show_lesson(slug: str, request: Request):
        lesson = _get_lesson(request, slug)
        return templates.TemplateResponse(request, "lesson.html", {"lesson": lesson, "body": render_lesson(lesson), "standalone": False})

    @app.get("/lessons/{slug}/raw", tags=["lessons"])
    def raw_lesson(slug: str, request: Request):
        lesson = _get_lesson(request, slug)
        return PlainTextResponse(lesson.text, media_type="text/markdown")

    @app.get("/lessons/{slug}/lint", tags=["lessons"])
    def lint_lesson(slug: str, request: Request):
        """Lint one lesson, including its consistency against the other copies."""
        lesson = _get_lesson(request, slug)
        findings = check_links(lesson) + check_code_blocks(lesson) + check_disclosures(lesson)
        findings += [f for f in check_consistency(request.app.state.lessons.values()) if f.path == lesson.path]
        return {
            "slug": slug,
            "ok": not any(f.severity == SEVERITY_ERROR for f in findings),
            "findings": [f.model_dump() for f in findings],
        }

    @app.get("/search", tags=["lessons"])
    def search(request: Request, q: str = "", limit: int = DEFAULT_SEARCH_LIMIT):
        if limit < 1 or limit > 100:
            raise HTTPException(status_code=400, detail="limit must be between 1 and 100")
        return search_lessons(q, request.app.state.settings.index_dir, limit=limit)


def _register_session_routes(app: FastAPI) -> None:

    @app.post("/login", tags=["session"])
    def login(body: LoginRequest, request: Request, response: Response):
        settings = request.app.state.settings
        manager: SessionManager = request.app.state.session_manager
        with session_scope(request.app.state.engine) as session:
            user = get_user_by_username(session, body.username)
            if user is None:
                logger.info("Login failed for unknown user %r", body.username)
                return JSONResponse({"error": "Invalid username"}, status_code=401)
            user_data = user.model_dump()

        manager.revoke_session(session_id_from(request))
        manager.cleanup_expired()
        session_id = manager.create_session({SESSION_USER_KEY: user_data["id"]})
        response.set_cookie(
            settings.session_cookie_name,
            session_id,
            max_age=settings.session_expiry_seconds,
            httponly=True,
            samesite="lax",
            secure=settings.session_cookie_secure,
        )
        logger.info("User %s logged in", user_data["username"])
        return user_data

    @app.delete("/logout", status_code=204, tags=["session"])
    def logout(request: Request):
        settings = request.app.state.settings
        request.app.state.session_manager.revoke_session(session_id_from(request))
        response = Response(status_code=204)
        response.delete_cookie(settings.session_cookie_name)
        return response

    @app.get("/check_session", tags=["session"])
    def check_session(request: Request):
        user_id = current_session(request).get(SESSION_USER_KEY)
        if not user_id:
            raise UnauthorizedError("check_session")
        with session_scope(request.app.state.engine) as session:
            user = session.get(User, user_id)
            if user is None:
                raise UnauthorizedError("check_session")
            return user.model_dump()


app = create_app()
