"""Whoosh full-text search over lesson sections."""

import logging
import os
import shutil
from typing import List

from whoosh.fields import Schema, TEXT, ID, NUMERIC
from whoosh.filedb.filestore import FileStorage
from whoosh.index import EmptyIndexError
from whoosh.qparser import MultifieldParser, OrGroup

from .constants import DEFAULT_SEARCH_LIMIT, MIN_SEARCH_QUERY_LENGTH
from .lesson import Lesson

logger = logging.getLogger(__name__)


def get_schema() -> Schema:
    """One document per lesson section."""
    return Schema(
        key=ID(stored=True, unique=True),
        slug=ID(stored=True),
        anchor=ID(stored=True),
        lesson_title=TEXT(stored=True),
        heading=TEXT(stored=True, field_boost=2.0),
        level=NUMERIC(stored=True),
        body=TEXT(stored=True),
    )


def rebuild_index(lessons: List[Lesson], index_dir: str) -> int:
    """Rebuild the search index from `lessons`. Returns the number of sections indexed."""
    logger.info("Rebuilding Whoosh search index at %s", index_dir)

    if os.path.exists(index_dir):
        try:
            shutil.rmtree(index_dir)
            logger.debug("Removed old index directory")
        except OSError as e:
            logger.warning("Failed to remove old index directory: %s", e)

    os.makedirs(index_dir, exist_ok=True)
    storage = FileStorage(index_dir)
    ix = storage.create_index(get_schema())
    writer = ix.writer()

    count = 0
    try:
        for lesson in lessons:
            for heading, body in lesson.iter_sections():
                writer.add_document(
                    key=f"{lesson.slug}#{heading.anchor}",
                    slug=lesson.slug,
                    anchor=heading.anchor,
                    lesson_title=lesson.title,
                    heading=heading.title,
                    level=heading.level,
                    body=body,
                )
                count += 1
        writer.commit()
    except Exception:
        writer.cancel()
        raise
    logger.info("Indexed %d sections from %d lessons", count, len(lessons))
    return count


def search_lessons(query_text: str, index_dir: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[dict]:
    """
    Search lesson sections.

    Supports the Whoosh query language: phrases ("before request"),
    AND/OR/NOT, prefixes (auth*).

    Returns a list of dicts with slug, anchor, heading, snippet and score.
    """
    if not query_text or len(query_text.strip()) < MIN_SEARCH_QUERY_LENGTH:
        return []

    storage = FileStorage(index_dir)
    try:
        ix = storage.open_index()
    except (EmptyIndexError, OSError):
        logger.warning("Search index not found at %s", index_dir)
        return []

    parser = MultifieldParser(["heading", "body"], schema=ix.schema, group=OrGroup)
    query = parser.parse(query_text)

    sections = []
    with ix.searcher() as searcher:
        results = searcher.search(query, limit=limit)
        for hit in results:
            sections.append({
                'slug': hit['slug'],
                'anchor': hit['anchor'],
                'lesson_title': hit.get('lesson_title', ''),
                'heading': hit['heading'],
                'level': hit.get('level'),
                'snippet': hit.highlights('body') or hit.get('body', '')[:160],
                'score': hit.score,
            })

    logger.debug("Search for '%s' returned %d sections", query_text, len(sections))
    return sections
