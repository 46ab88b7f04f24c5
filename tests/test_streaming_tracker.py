"""Tests for tools/streaming_tracker.py."""

from __future__ import annotations

from hypnosis_script_generator.models import SectionStatus
from hypnosis_script_generator.tools.streaming_tracker import StreamingSectionTracker


class TestShouldCreateNewSection:
    def test_no_current_section(self):
        tracker = StreamingSectionTracker("conv")
        assert tracker.should_create_new_section("Anything") is True

    def test_title_compatible_with_itself(self):
        tracker = StreamingSectionTracker("conv")
        for title in ["E", "Emergence", "Visualization of Success", ""]:
            tracker.start_new_section(3, title)
            assert tracker.should_create_new_section(title) is False

    def test_prefix_either_direction(self):
        tracker = StreamingSectionTracker("conv")
        tracker.start_new_section(0, "E")
        assert tracker.should_create_new_section("Emergence") is False
        tracker.update_current_section_title("Visualization")
        assert tracker.should_create_new_section("Visual") is False

    def test_case_sensitive(self):
        tracker = StreamingSectionTracker("conv")
        tracker.start_new_section(0, "Visual")
        assert tracker.should_create_new_section("visual") is True

    def test_distinct_title(self):
        tracker = StreamingSectionTracker("conv")
        tracker.start_new_section(0, "Induction")
        assert tracker.should_create_new_section("Emergence") is True

    def test_clear_and_reset(self):
        tracker = StreamingSectionTracker("conv")
        tracker.start_new_section(4, "Induction")
        tracker.clear_current_section()
        assert tracker.current_section is None
        tracker.start_new_section(4, "Induction")
        tracker.reset()
        assert tracker.current_section is None
        assert tracker.last_processed_line == 0


class TestProcess:
    def test_title_typed_out_keeps_one_section(self):
        tracker = StreamingSectionTracker("conv")
        first = tracker.process("# T\n\n## E")
        second = tracker.process("# T\n\n## Emer")
        third = tracker.process("# T\n\n## Emergence\nRelax now.")

        ids = {u.id for u in first + second + third}
        assert len(ids) == 1
        assert third[-1].title == "Emergence"
        assert third[-1].content == "Relax now."
        assert third[-1].status == SectionStatus.GENERATING

    def test_next_header_completes_previous(self):
        tracker = StreamingSectionTracker("conv")
        base = "# T\n\n## Emergence\nRelax now."
        tracker.process(base)
        updates = tracker.process(base + "\n## N")

        completed = [u for u in updates if u.status == SectionStatus.COMPLETED]
        assert len(completed) == 1
        assert completed[0].title == "Emergence"
        assert completed[0].content == "Relax now."
        assert completed[0].word_count == 2
        assert updates[-1].status == SectionStatus.GENERATING
        assert updates[-1].title == "N"

        later = tracker.process(base + "\n## Next\nMore.")
        assert [u.status for u in later] == [SectionStatus.GENERATING]
        assert later[0].title == "Next"
        assert later[0].id == updates[-1].id
        assert later[0].content == "More."

    def test_one_letter_headers(self):
        tracker = StreamingSectionTracker("conv")
        updates = tracker.process("# T\n## A\nbody a\n## B\nbody b")
        assert [(u.title, u.content, u.status) for u in updates] == [
            ("A", "body a", SectionStatus.COMPLETED),
            ("B", "body b", SectionStatus.GENERATING),
        ]

    def test_no_headers(self):
        tracker = StreamingSectionTracker("conv")
        assert tracker.process("# Title only\nsome text") == []

    def test_many_sections_at_once(self, sample_script):
        tracker = StreamingSectionTracker("conv")
        updates = tracker.process(sample_script)
        assert [(u.title, u.status) for u in updates] == [
            ("Introduction", SectionStatus.COMPLETED),
            ("Induction", SectionStatus.COMPLETED),
            ("Emergence", SectionStatus.GENERATING),
        ]


class TestDetectTitle:
    def test_title_resolves_until_newline(self):
        tracker = StreamingSectionTracker("conv")
        assert tracker.detect_title("# Ca") == "Ca"
        assert tracker.detect_title("# Calm") == "Calm"
        assert tracker.detect_title("# Calm Night\n") == "Calm Night"
        assert tracker.title_line_completed is True
        assert tracker.detect_title("# Calm Night\n\n## Intro") is None

    def test_no_title_line(self):
        tracker = StreamingSectionTracker("conv")
        assert tracker.detect_title("Hello") is None
        assert tracker.title_detected is False


class TestFinish:
    def test_finish_reports_completed(self, sample_script):
        tracker = StreamingSectionTracker("conv")
        tracker.process(sample_script)
        last = tracker.finish(sample_script)
        assert last.title == "Emergence"
        assert last.status == SectionStatus.COMPLETED
        assert last.content == "Now let sleep come."
        assert tracker.finish(sample_script) is None
