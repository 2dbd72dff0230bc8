"""HTML rendering of lessons (Python-Markdown + Jinja2)."""

import logging
import os
import re
from typing import Callable, Dict, List

import markdown
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .constants import TEMPLATES_DIR
from .lesson import Lesson, slugify, unique_anchor

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "toc", "md_in_html"]

_FENCE_RE = re.compile(r"^ {0,3}(?P<fence>`{3,}|~{3,})(?P<info>.*)$")
_DETAILS_OPEN_RE = re.compile(r"<details(?![^>]*\bmarkdown=)([^>]*)>", re.IGNORECASE)


def _toc_slugifier() -> Callable[[str, str], str]:
    """A toc slugify for one conversion.

    Repeated headings get the parser's `-N` suffixes, so the rendered ids are
    the anchors `check_links` validates. toc's own `_N` suffix never kicks in
    because the ids handed back are already unique.
    """
    seen: Dict[str, int] = {}

    def _slugify(value: str, separator: str) -> str:
        return unique_anchor(slugify(value), seen)

    return _slugify


def _mark_disclosures(text: str) -> str:
    """Let Markdown inside <details> answers render (md_in_html needs markdown="1")."""
    out = []
    fence = None  # (char, length)
    for line in text.splitlines():
        m = _FENCE_RE.match(line)
        if fence is None:
            if m and not (m.group("fence")[0] == "`" and "`" in m.group("info")):
                fence = (m.group("fence")[0], len(m.group("fence")))
            else:
                line = _DETAILS_OPEN_RE.sub(r'<details markdown="1"\1>', line)
        elif m and m.group("fence")[0] == fence[0] and len(m.group("fence")) >= fence[1] and not m.group("info").strip():
            fence = None
        out.append(line)
    return "\n".join(out)


def render_lesson(lesson: Lesson) -> str:
    """Render a lesson body to an HTML fragment."""
    md = markdown.Markdown(
        extensions=MARKDOWN_EXTENSIONS,
        extension_configs={"toc": {"slugify": _toc_slugifier()}},
        output_format="html",
    )
    return md.convert(_mark_disclosures(lesson.text))


def get_environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        autoescape=select_autoescape(["html"]),
    )


def render_page(lesson: Lesson, env: Environment | None = None) -> str:
    """Render a standalone HTML page for `lesson`."""
    env = env or get_environment()
    template = env.get_template("lesson.html")
    return template.render(lesson=lesson, body=render_lesson(lesson), standalone=True)


def export_lessons(lessons: List[Lesson], dest: str) -> List[str]:
    """Write `<slug>.html` for every lesson plus an index.html. Returns written paths."""
    os.makedirs(dest, exist_ok=True)
    env = get_environment()
    written = []
    for lesson in lessons:
        path = os.path.join(dest, f"{lesson.slug}.html")
        with open(path, "w", encoding="utf-8") as f:
            f.write(render_page(lesson, env))
        written.append(path)
        logger.debug("Exported %s -> %s", lesson.slug, path)

    index_path = os.path.join(dest, "index.html")
    with open(index_path, "w", encoding="utf-8") as f:
        f.write(env.get_template("index.html").render(lessons=lessons, standalone=True))
    written.append(index_path)
    logger.info("Exported %d lessons to %s", len(lessons), dest)
    return written
