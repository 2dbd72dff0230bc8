"""
Content lint for lesson copies.

Four checks, each returning a list of `Finding`:

- links: anchors, relative files and reference labels resolve
- code-blocks: fenced code parses in its tagged language
- disclosures: every <details> FAQ widget is closed and has a <summary>
- consistency: copies of the same lesson share outline, FAQ and references

Problems are reported as data, never raised.
"""

import ast
import json
import logging
import os
import textwrap
import tomllib
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import yaml
from pydantic import BaseModel, Field

from .constants import (
    CHECK_CODE,
    CHECK_CONSISTENCY,
    CHECK_DISCLOSURES,
    CHECK_LINKS,
    EXTERNAL_LINK_TIMEOUT,
    EXTERNAL_LINK_WORKERS,
    EXTERNAL_SCHEMES,
    LESSON_SUFFIX,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
)
from .lesson import Lesson, load_lesson

logger = logging.getLogger(__name__)


class Finding(BaseModel):
    check: str
    severity: str
    path: Optional[str] = None
    line: Optional[int] = None
    message: str

    def location(self) -> str:
        where = self.path or "<lesson>"
        return f"{where}:{self.line}" if self.line else where


class LintReport(BaseModel):
    findings: List[Finding] = Field(default_factory=list)
    lessons_checked: int = 0

    @property
    def errors(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == SEVERITY_ERROR]

    @property
    def warnings(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == SEVERITY_WARNING]

    @property
    def ok(self) -> bool:
        return not self.errors


def _error(check: str, lesson: Lesson, line: Optional[int], message: str) -> Finding:
    return Finding(check=check, severity=SEVERITY_ERROR, path=lesson.path, line=line, message=message)


def _warning(check: str, lesson: Lesson, line: Optional[int], message: str) -> Finding:
    return Finding(check=check, severity=SEVERITY_WARNING, path=lesson.path, line=line, message=message)


# -- links -------------------------------------------------------------------

def is_external(target: str) -> bool:
    return target.lower().startswith(EXTERNAL_SCHEMES)


def _lesson_dir(lesson: Lesson, root: Optional[str]) -> str:
    if lesson.path:
        return os.path.dirname(os.path.abspath(lesson.path))
    return os.path.abspath(root or os.getcwd())


def _check_file_target(lesson: Lesson, target: str, line: int, root: Optional[str]) -> Optional[Finding]:
    path_part, _, anchor = target.partition("#")
    file_part = unquote(path_part.partition("?")[0])
    base = _lesson_dir(lesson, root)
    if file_part.startswith("/"):
        full = os.path.join(os.path.abspath(root or base), file_part.lstrip("/"))
    else:
        full = os.path.normpath(os.path.join(base, file_part))
    if not os.path.exists(full):
        return _error(CHECK_LINKS, lesson, line, f"Link target does not exist: {target}")
    if anchor and full.endswith(LESSON_SUFFIX) and os.path.isfile(full):
        other = load_lesson(full)
        if anchor.lower() not in other.anchors:
            return _error(CHECK_LINKS, lesson, line, f"Anchor #{anchor} not found in {file_part}")
    return None


def check_external_link(url: str, client: httpx.Client) -> Tuple[str, object]:
    """Return (url, status code) or (url, error string)."""
    try:
        response = client.head(url)
        if response.status_code >= 400:
            # Some sites reject HEAD
            response = client.get(url)
        return url, response.status_code
    except httpx.HTTPError as e:
        return url, str(e)


def check_links(lesson: Lesson, root: Optional[str] = None, check_external: bool = False) -> List[Finding]:
    findings: List[Finding] = []
    used_labels = set()
    external: Dict[str, int] = OrderedDict()

    for link in lesson.links:
        if link.kind == "reference":
            used_labels.add(link.target)
            if link.target not in lesson.references:
                findings.append(_error(CHECK_LINKS, lesson, link.line, f"Undefined link reference [{link.target}]"))
                continue
            target = lesson.references[link.target]
        else:
            target = link.target

        if not target:
            findings.append(_error(CHECK_LINKS, lesson, link.line, f"Empty link target for '{link.text}'"))
        elif target.startswith("#"):
            if target[1:].lower() not in lesson.anchors:
                findings.append(_error(CHECK_LINKS, lesson, link.line, f"Anchor {target} does not match any heading"))
        elif is_external(target):
            external.setdefault(target, link.line)
        else:
            finding = _check_file_target(lesson, target, link.line, root)
            if finding:
                findings.append(finding)

    for label, url in lesson.references.items():
        if label not in used_labels:
            findings.append(_warning(CHECK_LINKS, lesson, lesson.reference_lines.get(label), f"Link reference [{label}] is never used"))
        elif is_external(url):
            external.setdefault(url, lesson.reference_lines.get(label))

    if check_external:
        urls = [u for u in external if not u.lower().startswith("mailto:")]
        if urls:
            logger.info("Checking %d external links in %s", len(urls), lesson.path or lesson.slug)
            with httpx.Client(timeout=EXTERNAL_LINK_TIMEOUT, follow_redirects=True) as client:
                with ThreadPoolExecutor(max_workers=EXTERNAL_LINK_WORKERS) as executor:
                    results = list(executor.map(lambda u: check_external_link(u, client), urls))
            for url, status in results:
                if not isinstance(status, int) or status >= 400:
                    findings.append(_error(CHECK_LINKS, lesson, external[url], f"External link failed ({status}): {url}"))

    return findings


# -- code blocks -------------------------------------------------------------

def _validate_python(code: str) -> None:
    ast.parse(textwrap.dedent(code))


def _validate_json(code: str) -> None:
    json.loads(code)


def _validate_yaml(code: str) -> None:
    yaml.safe_load(code)


def _validate_toml(code: str) -> None:
    tomllib.loads(code)


VALIDATORS: Dict[str, Callable[[str], None]] = {
    "python": _validate_python,
    "py": _validate_python,
    "python3": _validate_python,
    "json": _validate_json,
    "yaml": _validate_yaml,
    "yml": _validate_yaml,
    "toml": _validate_toml,
}

_VALIDATION_ERRORS = (SyntaxError, ValueError, yaml.YAMLError, tomllib.TOMLDecodeError)


def _error_line(exc: Exception) -> Optional[int]:
    if isinstance(exc, SyntaxError):
        return exc.lineno
    if isinstance(exc, json.JSONDecodeError):
        return exc.lineno
    mark = getattr(exc, "problem_mark", None)
    if mark is not None:
        return mark.line + 1
    return None


def check_code_blocks(lesson: Lesson) -> List[Finding]:
    findings: List[Finding] = []
    for block in lesson.code_blocks:
        if not block.closed:
            findings.append(_error(CHECK_CODE, lesson, block.line, "Code fence is never closed"))
            continue
        if not block.language:
            findings.append(_warning(CHECK_CODE, lesson, block.line, "Code block has no language tag"))
            continue
        validator = VALIDATORS.get(block.language)
        if validator is None:
            logger.debug("No validator for %s block at %s:%d", block.language, lesson.path, block.line)
            continue
        try:
            validator(block.code)
        except _VALIDATION_ERRORS as exc:
            offset = _error_line(exc)
            # +1 skips the opening fence line
            line = block.line + offset if offset else block.line
            reason = getattr(exc, "msg", None) or str(exc).splitlines()[0]
            findings.append(_error(CHECK_CODE, lesson, line, f"Invalid {block.language} code: {reason}"))
    return findings


# -- disclosures -------------------------------------------------------------

def check_disclosures(lesson: Lesson) -> List[Finding]:
    findings: List[Finding] = []
    for disclosure in lesson.disclosures:
        if not disclosure.closed:
            findings.append(_error(CHECK_DISCLOSURES, lesson, disclosure.line, "<details> block is never closed"))
        if disclosure.summary is None:
            findings.append(_error(CHECK_DISCLOSURES, lesson, disclosure.line, "<details> block has no <summary>"))
        elif not disclosure.summary:
            findings.append(_error(CHECK_DISCLOSURES, lesson, disclosure.line, "<summary> is empty"))
        elif disclosure.closed and not disclosure.body:
            findings.append(_warning(CHECK_DISCLOSURES, lesson, disclosure.line, f"Disclosure '{disclosure.summary}' has no answer"))
    for line in lesson.stray_closings:
        findings.append(_error(CHECK_DISCLOSURES, lesson, line, "</details> without a matching <details>"))
    return findings


# -- consistency -------------------------------------------------------------

def _group_copies(lessons: Iterable[Lesson]) -> Dict[str, List[Lesson]]:
    groups: Dict[str, List[Lesson]] = OrderedDict()
    for lesson in sorted(lessons, key=lambda l: l.path or l.slug):
        groups.setdefault(lesson.title.strip().lower(), []).append(lesson)
    return groups


def _compare_copies(reference: Lesson, copy: Lesson) -> List[Finding]:
    findings: List[Finding] = []
    ref_name = os.path.basename(reference.path) if reference.path else reference.slug

    ref_outline = reference.outline()
    outline = copy.outline()
    if outline != ref_outline:
        missing = [t for t in ref_outline if t not in outline]
        extra = [h for h in copy.headings if (h.level, h.title) not in ref_outline]
        for level, title in missing:
            findings.append(_error(CHECK_CONSISTENCY, copy, None, f"Missing heading {'#' * level} {title} (present in {ref_name})"))
        for heading in extra:
            findings.append(_error(CHECK_CONSISTENCY, copy, heading.line, f"Heading {'#' * heading.level} {heading.title} not present in {ref_name}"))
        if not missing and not extra:
            findings.append(_error(CHECK_CONSISTENCY, copy, None, f"Headings are ordered differently than in {ref_name}"))

    ref_summaries = [d.summary for d in reference.disclosures]
    summaries = [d.summary for d in copy.disclosures]
    if len(summaries) != len(ref_summaries):
        findings.append(_error(CHECK_CONSISTENCY, copy, None, f"Has {len(summaries)} FAQ disclosures, {ref_name} has {len(ref_summaries)}"))
    else:
        for disclosure, expected in zip(copy.disclosures, ref_summaries):
            if disclosure.summary != expected:
                findings.append(_error(CHECK_CONSISTENCY, copy, disclosure.line, f"FAQ summary '{disclosure.summary}' differs from '{expected}' in {ref_name}"))

    ref_labels = set(reference.references)
    labels = set(copy.references)
    for label in sorted(ref_labels - labels):
        findings.append(_error(CHECK_CONSISTENCY, copy, None, f"Missing link reference [{label}] (present in {ref_name})"))
    for label in sorted(labels - ref_labels):
        findings.append(_error(CHECK_CONSISTENCY, copy, copy.reference_lines.get(label), f"Link reference [{label}] not present in {ref_name}"))

    return findings


def check_consistency(lessons: Iterable[Lesson]) -> List[Finding]:
    """Compare every copy of a lesson against the first copy (by filename)."""
    findings: List[Finding] = []
    for title, copies in _group_copies(lessons).items():
        if len(copies) < 2:
            continue
        logger.debug("Comparing %d copies of '%s'", len(copies), title)
        reference = copies[0]
        for copy in copies[1:]:
            findings.extend(_compare_copies(reference, copy))
    return findings


def lint_lessons(lessons: List[Lesson], root: Optional[str] = None, check_external: bool = False) -> LintReport:
    report = LintReport(lessons_checked=len(lessons))
    for lesson in lessons:
        report.findings.extend(check_links(lesson, root=root, check_external=check_external))
        report.findings.extend(check_code_blocks(lesson))
        report.findings.extend(check_disclosures(lesson))
    report.findings.extend(check_consistency(lessons))
    logger.info(
        "Linted %d lessons: %d errors, %d warnings",
        report.lessons_checked, len(report.errors), len(report.warnings),
    )
    return report
