import textwrap

import pytest

from authz_primer.constants import BUNDLED_LESSONS_DIR, LESSON_SECTIONS
from authz_primer.lesson import load_lesson, load_lessons, parse_lesson, slugify

from tests._helpers import LESSON_A, write_lesson


def _parse(text, path=None):
    return parse_lesson(textwrap.dedent(text).lstrip("\n"), path=path)


def test_slugify_matches_github_style():
    assert slugify("Check For Understanding") == "check-for-understanding"
    assert slugify("What's `before_request`?") == "whats-before_request"
    assert slugify("A - B") == "a---b"


def test_headings_levels_and_anchors():
    lesson = _parse(LESSON_A)
    assert lesson.outline() == [
        (1, "Authorization"),
        (2, "Introduction"),
        (2, "Refactor"),
        (2, "Check For Understanding"),
    ]
    assert "check-for-understanding" in lesson.anchors
    assert lesson.title == "Authorization"


def test_repeated_headings_get_numbered_anchors():
    lesson = _parse("""
    ## Notes
    ## Notes
    ## Notes
    """)
    assert [h.anchor for h in lesson.headings] == ["notes", "notes-1", "notes-2"]


def test_heading_with_link_uses_link_text():
    lesson = _parse("## See [the docs](https://example.com)\n")
    assert lesson.headings[0].title == "See the docs"
    assert lesson.headings[0].anchor == "see-the-docs"


def test_code_block_language_and_content():
    lesson = _parse(LESSON_A)
    assert len(lesson.code_blocks) == 1
    block = lesson.code_blocks[0]
    assert block.language == "python"
    assert block.closed is True
    assert block.code.startswith("@app.before_request")
    assert block.line == 9


def test_fence_contents_are_opaque():
    lesson = _parse("""
    ```markdown
    # Not a heading
    [not a link](#nowhere)
    <details>
    ```
    """)
    assert lesson.headings == []
    assert lesson.links == []
    assert lesson.disclosures == []
    assert lesson.code_blocks[0].language == "markdown"


def test_tilde_fence_and_longer_closing_fence():
    lesson = _parse("""
    ~~~~ Ruby extra-info
    puts 1
    ~~~
    still code
    ~~~~~
    after
    """)
    assert len(lesson.code_blocks) == 1
    assert lesson.code_blocks[0].language == "ruby"
    assert "still code" in lesson.code_blocks[0].code


def test_untagged_and_unterminated_fences():
    lesson = _parse("""
    ```
    plain
    ```

    ```python
    x = 1
    """)
    untagged, unterminated = lesson.code_blocks
    assert untagged.language == ""
    assert untagged.closed is True
    assert unterminated.closed is False
    assert unterminated.code.strip() == "x = 1"


def test_disclosure_summary_and_body():
    lesson = _parse(LESSON_A)
    assert len(lesson.disclosures) == 1
    disclosure = lesson.disclosures[0]
    assert disclosure.summary == "Why a hook?"
    assert disclosure.body == "One place instead of many."
    assert disclosure.closed is True


def test_disclosure_on_one_line():
    lesson = _parse("<details><summary>Q <b>one</b></summary>A</details>\n")
    assert lesson.disclosures[0].summary == "Q one"
    assert lesson.disclosures[0].body == "A"


def test_disclosure_without_summary_unclosed_and_stray():
    lesson = _parse("""
    <details>
    no summary here
    </details>

    </details>

    <details>
    <summary>Open</summary>
    """)
    first, second = lesson.disclosures
    assert first.summary is None
    assert first.closed is True
    assert second.summary == "Open"
    assert second.closed is False
    assert lesson.stray_closings == [5]


def test_details_tag_in_code_span_is_ignored():
    lesson = _parse("Use a `<details>` element for FAQs.\n")
    assert lesson.disclosures == []
    assert lesson.stray_closings == []


def test_inline_and_reference_links():
    lesson = _parse(LESSON_A)
    kinds = {(l.kind, l.target) for l in lesson.links}
    assert ("inline", "#refactor") in kinds
    assert ("reference", "flask") in kinds
    assert lesson.references == {"flask": "https://flask.palletsprojects.com/"}


def test_shortcut_reference_needs_definition():
    lesson = _parse("""
    Read [Docs] and [not a ref].

    [docs]: https://example.com
    """)
    assert [(l.kind, l.target) for l in lesson.links] == [("reference", "docs")]


def test_links_in_code_spans_are_ignored():
    lesson = _parse("Write `[text](#anchor)` to link.\n")
    assert lesson.links == []


def test_collapsed_reference_uses_text_as_label():
    lesson = _parse("""
    See [Sessions][].

    [sessions]: https://example.com/s
    """)
    assert lesson.links[0].target == "sessions"


def test_title_falls_back_to_file_stem():
    lesson = parse_lesson("## Only a section\n", path="/tmp/my-lesson.md")
    assert lesson.slug == "my-lesson"
    assert lesson.title == "my-lesson"


def test_crlf_line_endings():
    lesson = parse_lesson("# T\r\n\r\n<details>\r\n<summary>S</summary>\r\nB\r\n</details>\r\n")
    assert lesson.disclosures[0].summary == "S"
    assert lesson.disclosures[0].body == "B"


def test_iter_sections_splits_on_headings():
    lesson = _parse(LESSON_A)
    sections = dict((h.anchor, body) for h, body in lesson.iter_sections())
    assert "See the [refactor]" in sections["introduction"]
    assert "check_if_logged_in" in sections["refactor"]
    assert "Why a hook?" in sections["check-for-understanding"]


def test_load_lessons_sorted_and_filtered(tmp_path):
    write_lesson(tmp_path, "b.md", "# B\n")
    write_lesson(tmp_path, "a.md", "# A\n")
    write_lesson(tmp_path, "notes.txt", "# ignored\n")
    lessons = load_lessons(str(tmp_path))
    assert [l.slug for l in lessons] == ["a", "b"]


def test_load_lessons_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_lessons(str(tmp_path / "nope"))


def test_bundled_lessons_have_expected_sections():
    lessons = load_lessons(BUNDLED_LESSONS_DIR)
    assert {l.slug for l in lessons} == {"authorization-flask", "authorization-rails", "authorization"}
    for lesson in lessons:
        assert lesson.title == "Authorization"
        assert [h.title for h in lesson.headings if h.level == 2] == list(LESSON_SECTIONS)
        assert len(lesson.disclosures) == 3


def test_load_lesson_records_path(tmp_path):
    path = write_lesson(tmp_path, "x.md", LESSON_A)
    lesson = load_lesson(str(path))
    assert lesson.path == str(path)
    assert lesson.slug == "x"
