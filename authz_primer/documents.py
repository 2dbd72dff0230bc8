"""Documents API. Every route here runs `check_if_logged_in` before anything else."""

import datetime
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field
from sqlmodel import select

from .constants import MAX_TITLE_LENGTH, SESSION_USER_KEY
from .db import get_document, session_scope
from .guard import LoginRequiredRoute, current_session
from .models import Document

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["documents"],
    route_class=LoginRequiredRoute,
)


class CreateDocumentRequest(BaseModel):
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    content: str = ""


class UpdateDocumentRequest(BaseModel):
    """Only provided fields are updated."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=MAX_TITLE_LENGTH)
    content: Optional[str] = None


@router.get("", name="document_list")
def document_list(request: Request):
    """Titles only; exempt from the login check by default."""
    with session_scope(request.app.state.engine) as session:
        rows = session.exec(select(Document).order_by(Document.id)).all()
        return [{"id": d.id, "title": d.title} for d in rows]


@router.get("/{document_id}", name="document_detail")
def document_detail(document_id: int, request: Request):
    with session_scope(request.app.state.engine) as session:
        doc = get_document(session, document_id)
        if not doc:
            raise HTTPException(status_code=404, detail="Document not found")
        return doc.model_dump()


@router.post("", name="document_create", status_code=201)
def document_create(body: CreateDocumentRequest, request: Request):
    user_id = current_session(request).get(SESSION_USER_KEY)
    with session_scope(request.app.state.engine) as session:
        doc = Document(title=body.title, content=body.content, author_id=user_id)
        session.add(doc)
        session.commit()
        session.refresh(doc)
        logger.info("User %s created document %s", user_id, doc.id)
        return doc.model_dump()


@router.patch("/{document_id}", name="document_update")
def document_update(document_id: int, body: UpdateDocumentRequest, request: Request):
    with session_scope(request.app.state.engine) as session:
        doc = get_document(session, document_id)
        if not doc:
            raise HTTPException(status_code=404, detail="Document not found")

        if body.title is not None:
            doc.title = body.title
        if body.content is not None:
            doc.content = body.content
        doc.updated_at = datetime.datetime.now(datetime.timezone.utc)

        session.add(doc)
        session.commit()
        session.refresh(doc)
        logger.info("Updated document %s", document_id)
        return doc.model_dump()
