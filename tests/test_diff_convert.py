"""
ABOUTME: Tests for diff-to-annotation conversion and comment anchoring
ABOUTME: Word-level alignment, change classification, fence rendering, anchor strategies
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "skills" / "doc-review" / "scripts"))

from markup_edit.annotations import count_annotations, parse, strip  # noqa: E402  # type: ignore[import-not-found]
from markup_edit.common import ReviewComment  # noqa: E402  # type: ignore[import-not-found]
from markup_edit.diff_convert import (  # noqa: E402  # type: ignore[import-not-found]
    anchor_comments,
    classify_hunks,
    convert,
    diff_changes,
    extract_visible_comments,
    render_changes,
    splice_markup,
)


class TestDiffChanges:
    """Tests for diff_changes() classification"""

    def test_insertion(self):
        """A new word is one insert at the following word's offset"""
        changes = diff_changes("The cat sat.", "The big cat sat.", reviewer="Ann")
        assert len(changes) == 1
        change = changes[0]
        assert (change.type, change.start, change.end, change.text) == ('insert', 4, 4, "big ")
        assert change.reviewer == "Ann"

    def test_deletion(self):
        changes = diff_changes("The very big cat.", "The big cat.")
        assert [(c.type, c.start, c.end, c.original_text) for c in changes] == [
            ('delete', 4, 9, "very "),
        ]

    def test_substitution_trims_shared_trailing_space(self):
        """Delete followed by insert becomes one substitution without the common space"""
        changes = diff_changes("The fast car.", "The quick car.")
        assert [(c.type, c.start, c.end, c.original_text, c.text) for c in changes] == [
            ('substitute', 4, 8, "fast", "quick"),
        ]

    def test_identical_text(self):
        assert diff_changes("Same text.", "Same text.") == []

    def test_empty_revision(self):
        """An empty extraction is not a request to delete everything"""
        assert diff_changes("Some text.", "") == []
        assert diff_changes("Some text.", "  \n") == []

    def test_whitespace_runs_are_not_changes(self):
        """Runs of the same whitespace class compare equal"""
        assert diff_changes("one  two\n\nthree", "one two\n\nthree") == []

    def test_whole_document_replacement(self):
        """Zero overlap yields one large substitution"""
        changes = diff_changes("alpha beta", "gamma delta")
        assert len(changes) == 1
        assert changes[0].type == 'substitute'
        assert (changes[0].start, changes[0].end) == (0, 10)

    def test_append_at_end(self):
        result = convert("End.", "End. More.")
        assert [c.type for c in result.changes] == ["insert"]
        assert strip(result.annotated_text) == "End. More."

    def test_ranges_are_ordered(self):
        changes = diff_changes("a b c d e", "a x c y e")
        starts = [c.start for c in changes]
        assert starts == sorted(starts)
        assert len(changes) == 2


class TestClassifyHunks:
    """Tests for classify_hunks()"""

    def test_delete_then_insert_becomes_substitute(self):
        hunks = [('delete', 2, 3, 2, 2), ('insert', 3, 3, 2, 3)]
        assert classify_hunks(hunks) == [('substitute', 2, 3, 2, 3)]

    def test_separate_hunks_stay_separate(self):
        hunks = [('delete', 0, 1, 0, 0), ('insert', 4, 4, 3, 4)]
        assert classify_hunks(hunks) == hunks


class TestConvert:
    """Tests for convert()"""

    def test_insert_scenario(self):
        result = convert("The cat sat.", "The big cat sat.")
        assert result.annotated_text == "The {++big ++}cat sat."
        assert [c.type for c in result.changes] == ['insert']
        assert result.stats['insert'] == 1
        assert result.stats['total'] == 1

    def test_mixed_changes(self):
        result = convert("The very fast car is red.", "The quick car is blue.")
        assert strip(result.annotated_text) == "The quick car is blue."
        assert result.annotated_text.startswith("The ")

    def test_identical_text_is_unchanged(self):
        result = convert("Nothing changed.", "Nothing changed.")
        assert result.annotated_text == "Nothing changed."
        assert result.changes == []

    def test_reject_restores_original(self):
        """Rejecting every generated change gives back the original"""
        from markup_edit.decisions import reject_all  # type: ignore[import-not-found]
        original = "First line here.\n\nSecond paragraph with words."
        revised = "First line.\n\nSecond new paragraph with more words!"
        result = convert(original, revised)
        assert strip(result.annotated_text) == revised
        assert reject_all(result.annotated_text) == original

    def test_existing_comment_survives(self):
        """Comment fences in the original are not diffed and stay in place"""
        result = convert("The cat{>>Ann: note<<} sat.", "The dog sat.")
        assert result.annotated_text == "The {~~cat~>dog~~}{>>Ann: note<<} sat."

    def test_existing_comment_no_spurious_changes(self):
        result = convert("The cat{>>Ann: note<<} sat.", "The cat sat.")
        assert result.changes == []
        assert result.annotated_text == "The cat{>>Ann: note<<} sat."


class TestCommentAnchoring:
    """Tests for anchor_comments() via convert()"""

    def test_exact_anchor(self):
        comment = ReviewComment(author="Ann", text="Which mat?", anchor="the mat")
        result = convert("The cat sat on the mat.", "The cat sat on the mat.", comments=[comment])
        assert result.annotated_text == "The cat sat on the mat{>>Ann: Which mat?<<}."
        assert result.stats['comment'] == 1
        assert result.stats['unanchored'] == 0
        assert result.warnings == []

    def test_anchor_found_in_accepted_view(self):
        """Anchor text that spans an insertion is matched through the accepted reading"""
        comment = ReviewComment(author="Ann", text="x", anchor="big cat")
        result = convert("The cat sat.", "The big cat sat.", comments=[comment])
        assert result.annotated_text == "The {++big ++}cat{>>Ann: x<<} sat."

    def test_whitespace_normalised_anchor(self):
        comment = ReviewComment(author="Ann", text="x", anchor="cat   SAT")
        text, warnings, unanchored = anchor_comments("The cat sat.", [comment])
        assert text == "The cat sat{>>Ann: x<<}."
        assert unanchored == 0

    def test_anchor_inside_fence_snaps_after_it(self):
        comment = ReviewComment(author="A", text="x", anchor="old")
        result = convert("The old cat.", "The cat.", comments=[comment])
        assert result.annotated_text == "The {--old --}{>>A: x<<}cat."

    def test_context_picks_between_duplicates(self):
        text = "The cat ran away quickly today. The cat sat on the mat."
        comment = ReviewComment(author="A", text="x", anchor="cat", after="sat on the mat.")
        result, _, _ = anchor_comments(text, [comment])
        assert result == "The cat ran away quickly today. The cat{>>A: x<<} sat on the mat."

    def test_before_context_fallback(self):
        """An empty anchor is placed after its preceding context"""
        comment = ReviewComment(author="A", text="x", anchor="", before="cat ran.")
        result, _, unanchored = anchor_comments("The cat ran. Then it sat.", [comment])
        assert result == "The cat ran.{>>A: x<<} Then it sat."
        assert unanchored == 0

    def test_unmatched_comment_goes_to_paragraph_end(self):
        text = "First para.\n\nSecond para."
        comment = ReviewComment(author="Ann", text="Lost", anchor="zebra",
                                doc_position=0, doc_length=len(text))
        result, warnings, unanchored = anchor_comments(text, [comment])
        assert result == "First para.{>>Ann: Lost<<}\n\nSecond para."
        assert unanchored == 1
        assert len(warnings) == 1
        assert "anchor not found" in warnings[0]

    def test_unmatched_without_hint_goes_to_end(self):
        text = "First para.\n\nSecond para.\n"
        comment = ReviewComment(author="Ann", text="Lost", anchor="zebra")
        result, _, _ = anchor_comments(text, [comment])
        assert result == "First para.\n\nSecond para.{>>Ann: Lost<<}\n"

    def test_comments_on_same_anchor_form_thread(self):
        comments = [
            ReviewComment(author="Ann", text="first", anchor="cat"),
            ReviewComment(author="Bob", text="second", anchor="cat"),
        ]
        result, _, _ = anchor_comments("The cat sat.", comments)
        assert result == "The cat{>>Ann: first<<}{>>Bob: second<<} sat."
        annotations = parse(result)
        assert annotations[1].reply_to == annotations[0].position

    def test_resolved_comment_keeps_status(self):
        comment = ReviewComment(author="Ann", text="done", anchor="cat", resolved=True)
        result, _, _ = anchor_comments("The cat sat.", [comment])
        assert "{>>✓ Ann: done<<}" in result

    def test_fence_markers_in_body_are_broken_up(self):
        """A body mentioning fence syntax still parses as one comment"""
        comment = ReviewComment(author="Bob", text="use {++ for inserts, not <<}", anchor="cat")
        result = convert("The cat sat.", "The cat sat.", comments=[comment])
        assert result.annotated_text == "The cat{>>Bob: use { ++ for inserts, not << }<<} sat."
        counts = count_annotations(result.annotated_text)
        assert counts["comment"] == 1
        assert counts["total"] == 1


class TestRendering:
    """Tests for render_changes() and splice_markup()"""

    def test_render_is_right_to_left(self):
        original = "a b c"
        changes = diff_changes(original, "x b y")
        rendered = render_changes(original, changes)
        assert rendered == "{~~a~>x~~} b {~~c~>y~~}"

    def test_splice_moves_comments_out_of_span(self):
        text = "keep old{>>A: c<<} text"
        result = splice_markup(text, 5, len(text), "{--old text--}")
        assert result == "keep {--old text--}{>>A: c<<}"


class TestMarkdownSource:
    """Markdown syntax the reviewer's document shows rendered is not a change"""

    def test_round_trip_without_syntax_has_no_changes(self):
        original = "# Intro\n\nThe *cat* sat.\n\n- one\n- two"
        result = convert(original, "Intro\n\nThe cat sat.\n\none\n\ntwo")
        assert result.changes == []
        assert result.annotated_text == original

    def test_emphasis_markers_stay_outside_substitution(self):
        result = convert("The *cat* sat.", "The dog sat.")
        assert result.annotated_text == "The *{~~cat~>dog~~}* sat."

    def test_deleting_emphasized_word_takes_both_markers(self):
        from markup_edit.decisions import accept_all, reject_all  # type: ignore[import-not-found]
        original = "The *very* big car."
        result = convert(original, "The big car.")
        assert result.annotated_text == "The {--*very* --}big car."
        assert accept_all(result.annotated_text) == "The big car."
        assert reject_all(result.annotated_text) == original

    def test_heading_is_never_deleted(self):
        original = "# Intro\n\nBody text."
        result = convert(original, "Body text.")
        assert result.changes == []
        assert result.annotated_text == original

    def test_first_word_of_heading_can_go(self):
        result = convert("# Big Intro\n\nBody.", "Intro\n\nBody.")
        assert result.annotated_text == "# {--Big --}Intro\n\nBody."

    def test_heading_text_can_change(self):
        result = convert("# Intro\n\nBody.", "Introduction\n\nBody.")
        assert result.annotated_text == "# {~~Intro~>Introduction~~}\n\nBody."

    def test_deleted_list_item_takes_its_marker(self):
        from markup_edit.decisions import accept_all, reject_all  # type: ignore[import-not-found]
        original = "- one\n- two\n- three"
        result = convert(original, "one\nthree")
        assert result.annotated_text == "- one\n{--- two\n--}- three"
        assert accept_all(result.annotated_text) == "- one\n- three"
        assert reject_all(result.annotated_text) == original

    def test_link_markup_is_ignored(self):
        assert diff_changes("See [the docs](http://example.org) now.", "See the docs now.") == []

    def test_markdown_off_diffs_every_character(self):
        changes = diff_changes("*cat*", "cat", markdown=False)
        assert [c.type for c in changes] == ['delete', 'delete']
        assert diff_changes("*cat*", "cat") == []

    def test_snake_case_is_not_emphasis(self):
        changes = diff_changes("call my_var_name here", "call my_var_name there")
        assert [(c.original_text, c.text) for c in changes] == [("here", "there")]


class TestVisibleComments:
    """Tests for extract_visible_comments() and its use in convert()"""

    def test_note_is_removed_and_returned(self):
        clean, comments = extract_visible_comments("The cat [Bob: which one?] sat.")
        assert clean == "The cat sat."
        assert len(comments) == 1
        comment = comments[0]
        assert (comment.author, comment.text) == ("Bob", "which one?")
        assert comment.before == "The cat"
        assert comment.after == " sat."
        assert (comment.doc_position, comment.doc_length) == (7, 12)

    def test_links_and_citations_are_not_notes(self):
        text = "See [Note: here](http://example.org) and [@key: p. 4]."
        assert extract_visible_comments(text) == (text, [])

    def test_convert_places_note_as_comment(self):
        result = convert("The cat sat.", "The cat [Bob: which one?] sat.")
        assert result.annotated_text == "The cat{>>Bob: which one?<<} sat."
        assert result.changes == []
        assert result.stats['comment'] == 1

    def test_disabled_keeps_note_as_text(self):
        result = convert("The cat sat.", "The cat [Bob: x] sat.", visible_comments=False)
        assert result.stats['comment'] == 0
        assert strip(result.annotated_text) == "The cat [Bob: x] sat."
