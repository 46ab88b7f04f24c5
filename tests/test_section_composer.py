"""Tests for tools/section_composer.py."""

from __future__ import annotations

from hypnosis_script_generator.tools.document_parser import parse_sections
from hypnosis_script_generator.tools.section_composer import (
    compose_header,
    compose_section,
    replace_section,
    strip_leading_header,
)


class TestCompose:
    def test_running_document(self):
        doc = compose_header("Calm") + compose_section("One", "  first body \n") + compose_section("Two", "second")
        assert doc == "# Calm\n\n## One\nfirst body\n\n## Two\nsecond\n\n"
        assert [s.title for s in parse_sections(doc)] == ["One", "Two"]


class TestStripLeadingHeader:
    def test_echoed_header_removed(self):
        assert strip_leading_header("## Induction\nBreathe.", "Induction") == "Breathe."

    def test_other_header_kept(self):
        assert strip_leading_header("## Other\nBreathe.", "Induction") == "## Other\nBreathe."

    def test_no_header(self):
        assert strip_leading_header("Breathe.", "Induction") == "Breathe."

    def test_title_with_regex_characters(self):
        assert strip_leading_header("## Part (1)\ntext", "Part (1)") == "text"


class TestReplaceSection:
    def test_replaces_only_target(self, sample_script):
        result = replace_section(sample_script, "Induction", "A brand new induction.")
        sections = {s.title: s.content for s in parse_sections(result)}
        assert sections["Induction"] == "A brand new induction."
        assert sections["Introduction"].startswith("Welcome.")
        assert sections["Emergence"] == "Now let sleep come."
        assert result.startswith("# Calm Before Sleep")

    def test_headers_in_new_content_dropped(self, sample_script):
        result = replace_section(sample_script, "Induction", "## Induction\nBody.\n## Sneaky\nMore.")
        titles = [s.title for s in parse_sections(result)]
        assert titles == ["Introduction", "Induction", "Emergence"]

    def test_empty_body(self, sample_script):
        result = replace_section(sample_script, "Induction", "")
        sections = {s.title: s.content for s in parse_sections(result)}
        assert sections["Induction"] == ""

    def test_missing_section_appended(self, sample_script):
        result = replace_section(sample_script, "Coda", "Sleep well.")
        assert result.endswith("## Coda\n\nSleep well.")

    def test_first_duplicate_only(self):
        doc = "## A\none\n## A\ntwo"
        result = replace_section(doc, "A", "new")
        assert [s.content for s in parse_sections(result)] == ["new", "two"]
