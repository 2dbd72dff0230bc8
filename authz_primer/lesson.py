"""
Markdown lesson parsing.

Turns a lesson file into a `Lesson` model holding the pieces the linter,
renderer and search index care about:

- ATX headings with GitHub-style anchors
- fenced code blocks with their language tag
- <details>/<summary> disclosure blocks (the FAQ widgets)
- inline and reference-style links, plus link reference definitions

Scanning is line based. Fenced code is opaque: nothing inside a fence is a
heading, link or disclosure.
"""

import logging
import os
import re
import unicodedata
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from .constants import LESSON_SUFFIX

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^ {0,3}(?P<fence>`{3,}|~{3,})\s*(?P<info>[^\n]*)$")
_HEADING_RE = re.compile(r"^ {0,3}(?P<hashes>#{1,6})(?:[ \t]+(?P<title>.*?))?(?:[ \t]+#+)?[ \t]*$")
_REF_DEF_RE = re.compile(r"""^ {0,3}\[(?P<label>[^\]]+)\]:\s*<?(?P<url>[^\s>]+)>?(?:\s+["'(].*["')])?\s*$""")
_CODE_SPAN_RE = re.compile(r"(`+)(?:.+?)\1")
_INLINE_LINK_RE = re.compile(r"!?\[(?P<text>[^\]]*)\]\(\s*<?(?P<target>[^)\s>]*)>?(?:\s+(?:\"[^\"]*\"|'[^']*'))?\s*\)")
_FULL_REF_RE = re.compile(r"!?\[(?P<text>[^\]]+)\]\[(?P<label>[^\]]*)\]")
_SHORTCUT_REF_RE = re.compile(r"(?<![\]\\])\[(?P<label>[^\]\[]+)\](?![\[(:])")
_DETAILS_TAG_RE = re.compile(r"<(?P<close>/?)details\b[^>]*>", re.IGNORECASE)
_SUMMARY_RE = re.compile(r"<summary\b[^>]*>(?P<summary>.*?)</summary>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


class Heading(BaseModel):
    level: int
    title: str
    anchor: str
    line: int


class CodeBlock(BaseModel):
    language: str = ""
    code: str = ""
    line: int
    closed: bool = True


class Disclosure(BaseModel):
    """A <details> block. `summary` is None when no <summary> was found."""
    summary: Optional[str] = None
    body: str = ""
    line: int
    closed: bool = True


class Link(BaseModel):
    text: str
    target: str
    line: int
    kind: str = "inline"  # inline | reference


class Lesson(BaseModel):
    path: Optional[str] = None
    slug: str
    title: str
    text: str
    headings: List[Heading] = Field(default_factory=list)
    code_blocks: List[CodeBlock] = Field(default_factory=list)
    disclosures: List[Disclosure] = Field(default_factory=list)
    links: List[Link] = Field(default_factory=list)
    references: Dict[str, str] = Field(default_factory=dict)
    reference_lines: Dict[str, int] = Field(default_factory=dict)
    stray_closings: List[int] = Field(default_factory=list)

    @property
    def anchors(self) -> set:
        return {h.anchor for h in self.headings}

    def outline(self) -> List[Tuple[int, str]]:
        return [(h.level, h.title) for h in self.headings]

    def iter_sections(self) -> Iterator[Tuple[Heading, str]]:
        """Yield each heading with the raw Markdown up to the next heading."""
        lines = self.text.splitlines()
        for idx, heading in enumerate(self.headings):
            end = self.headings[idx + 1].line - 1 if idx + 1 < len(self.headings) else len(lines)
            body = "\n".join(lines[heading.line:end]).strip()
            yield heading, body


def _normalize_title(raw: str) -> str:
    title = _INLINE_LINK_RE.sub(lambda m: m.group("text"), raw)
    return title.strip()


def slugify(title: str) -> str:
    """GitHub-style anchor: lowercase, punctuation dropped, spaces to hyphens."""
    text = unicodedata.normalize("NFKC", _TAG_RE.sub("", title)).strip().lower()
    text = re.sub(r"[^\w\- ]", "", text)
    return text.replace(" ", "-")


def unique_anchor(base: str, seen: Dict[str, int]) -> str:
    if base not in seen:
        seen[base] = 0
        return base
    seen[base] += 1
    return f"{base}-{seen[base]}"


def _strip_code_spans(line: str) -> str:
    return _CODE_SPAN_RE.sub(lambda m: " " * len(m.group(0)), line)


def _normalize_label(label: str) -> str:
    return " ".join(label.split()).lower()


def parse_lesson(text: str, path: Optional[str] = None) -> Lesson:
    """Parse Markdown `text` into a Lesson."""
    text = text.replace("\r\n", "\n")
    lines = text.splitlines()
    headings: List[Heading] = []
    code_blocks: List[CodeBlock] = []
    disclosures: List[Disclosure] = []
    references: Dict[str, str] = {}
    reference_lines: Dict[str, int] = {}
    stray_closings: List[int] = []
    # (line, text, kind, label) until definitions are known
    pending_links: List[Tuple[int, str, str, Optional[str]]] = []
    seen_anchors: Dict[str, int] = {}

    # offsets of every line start, used to slice disclosure bodies
    offsets = []
    pos = 0
    for line in lines:
        offsets.append(pos)
        pos += len(line) + 1

    # open <details>: (line number, body start offset)
    open_details: List[Tuple[int, int]] = []
    fence: Optional[Tuple[str, int, int, str]] = None  # (char, length, start line, language)
    fence_lines: List[str] = []

    for lineno, line in enumerate(lines, start=1):
        if fence is not None:
            char, length, start, language = fence
            stripped = line.strip()
            if stripped and set(stripped) == {char} and len(stripped) >= length and len(line) - len(line.lstrip(" ")) <= 3:
                code_blocks.append(CodeBlock(language=language, code="\n".join(fence_lines), line=start, closed=True))
                fence = None
                fence_lines = []
            else:
                fence_lines.append(line)
            continue

        m = _FENCE_OPEN_RE.match(line)
        if m and not (m.group("fence")[0] == "`" and "`" in m.group("info")):
            info = m.group("info").strip()
            language = info.split()[0].lower() if info else ""
            fence = (m.group("fence")[0], len(m.group("fence")), lineno, language)
            fence_lines = []
            continue

        m = _HEADING_RE.match(line)
        if m:
            title = _normalize_title(m.group("title") or "")
            anchor = unique_anchor(slugify(title), seen_anchors)
            headings.append(Heading(level=len(m.group("hashes")), title=title, anchor=anchor, line=lineno))

        m = _REF_DEF_RE.match(line)
        if m:
            label = _normalize_label(m.group("label"))
            if label not in references:
                references[label] = m.group("url")
                reference_lines[label] = lineno
            continue

        scan = _strip_code_spans(line)
        for tag in _DETAILS_TAG_RE.finditer(scan):
            if tag.group("close"):
                if open_details:
                    start_line, body_start = open_details.pop()
                    body = text[body_start:offsets[lineno - 1] + tag.start()]
                    disclosures.append(_make_disclosure(body, start_line, closed=True))
                else:
                    stray_closings.append(lineno)
            else:
                open_details.append((lineno, offsets[lineno - 1] + tag.end()))

        for lm in _INLINE_LINK_RE.finditer(scan):
            pending_links.append((lineno, lm.group("text"), "inline", lm.group("target")))
        scan = _INLINE_LINK_RE.sub(lambda mm: " " * len(mm.group(0)), scan)
        for lm in _FULL_REF_RE.finditer(scan):
            label = lm.group("label") or lm.group("text")
            pending_links.append((lineno, lm.group("text"), "reference", label))
        scan = _FULL_REF_RE.sub(lambda mm: " " * len(mm.group(0)), scan)
        for lm in _SHORTCUT_REF_RE.finditer(scan):
            pending_links.append((lineno, lm.group("label"), "shortcut", lm.group("label")))

    if fence is not None:
        _, _, start, language = fence
        code_blocks.append(CodeBlock(language=language, code="\n".join(fence_lines), line=start, closed=False))

    for start_line, body_start in open_details:
        disclosures.append(_make_disclosure(text[body_start:], start_line, closed=False))
    disclosures.sort(key=lambda d: d.line)

    links: List[Link] = []
    for lineno, link_text, kind, target in pending_links:
        if kind == "inline":
            links.append(Link(text=link_text, target=target or "", line=lineno, kind="inline"))
            continue
        label = _normalize_label(target or "")
        # An undefined shortcut reference is plain bracketed text
        if kind == "shortcut" and label not in references:
            continue
        links.append(Link(text=link_text, target=label, line=lineno, kind="reference"))

    slug = os.path.splitext(os.path.basename(path))[0] if path else "lesson"
    title = next((h.title for h in headings if h.level == 1), None) or slug

    return Lesson(
        path=path,
        slug=slug,
        title=title,
        text=text,
        headings=headings,
        code_blocks=code_blocks,
        disclosures=disclosures,
        links=links,
        references=references,
        reference_lines=reference_lines,
        stray_closings=stray_closings,
    )


def _make_disclosure(body: str, line: int, closed: bool) -> Disclosure:
    summary = None
    m = _SUMMARY_RE.search(body)
    if m:
        summary = " ".join(_TAG_RE.sub("", m.group("summary")).split())
        body = body[:m.start()] + body[m.end():]
    return Disclosure(summary=summary, body=body.strip(), line=line, closed=closed)


def load_lesson(path: str) -> Lesson:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    return parse_lesson(text, path=path)


def load_lessons(directory: str) -> List[Lesson]:
    """Load every Markdown lesson in `directory`, sorted by filename."""
    if not os.path.isdir(directory):
        raise FileNotFoundError(f"Lessons directory not found: {directory}")
    lessons = []
    for name in sorted(os.listdir(directory)):
        if not name.endswith(LESSON_SUFFIX):
            continue
        lessons.append(load_lesson(os.path.join(directory, name)))
    logger.debug("Loaded %d lessons from %s", len(lessons), directory)
    return lessons
