"""
ABOUTME: Tests for the inline annotation scanner and pure text operations
ABOUTME: parse, count_annotations, strip, filter_annotations, text_view
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "skills" / "doc-review" / "scripts"))

from markup_edit.annotations import (  # noqa: E402  # type: ignore[import-not-found]
    annotation_at,
    count_annotations,
    filter_annotations,
    get_comments,
    get_track_changes,
    parse,
    parse_comment_body,
    strip,
    text_view,
)

SAMPLE = "The {++big ++}cat {--really --}sat {~~on~>upon~~} the mat.{>>Ann: nice<<}"


class TestParse:
    """Tests for parse()"""

    def test_recognises_all_four_kinds_in_order(self):
        """Each fence form is returned once, in document order"""
        kinds = [a.kind for a in parse(SAMPLE)]
        assert kinds == ['insert', 'delete', 'substitute', 'comment']

    def test_insert_position_and_markup(self):
        """Position is the offset of the opening marker"""
        insert = parse(SAMPLE)[0]
        assert insert.position == 4
        assert insert.markup == "{++big ++}"
        assert insert.content == "big "
        assert SAMPLE[insert.position:insert.end] == insert.markup

    def test_substitute_halves(self):
        """Substitution splits on the first ~>"""
        sub = parse(SAMPLE)[2]
        assert sub.content == "on"
        assert sub.replacement == "upon"

    def test_comment_author_and_body(self):
        """Author prefix is split off the comment body"""
        comment = parse(SAMPLE)[3]
        assert comment.author == "Ann"
        assert comment.content == "nice"
        assert comment.resolved is False

    def test_resolved_comment(self):
        """A leading check mark marks the comment resolved"""
        comment = parse("Text{>>✓ Bob: done<<}")[0]
        assert comment.resolved is True
        assert comment.author == "Bob"
        assert comment.content == "done"

    def test_unattributed_comment(self):
        """A colon inside a URL is not an author separator"""
        comment = parse("{>>see http://example.org<<}")[0]
        assert comment.author is None
        assert comment.display_author == "Anonymous"
        assert comment.content == "see http://example.org"

    def test_empty_text(self):
        """Empty text has no annotations"""
        assert parse("") == []

    def test_plain_braces_are_ignored(self):
        """Braces that do not open a fence are plain text"""
        assert parse("a {b} c {{ d }}") == []

    def test_line_numbers(self):
        """Line is counted from the start of the text"""
        annotations = parse("a\nb {++x++}\n\n{--y--}")
        assert [a.line for a in annotations] == [2, 4]

    def test_before_context(self):
        """Preceding plain text is recorded, stripped"""
        assert parse("Hello world {++x++}")[0].before == "Hello world"


class TestMalformedFences:
    """Malformed markup is left alone and never raises"""

    def test_unterminated_fence(self):
        """An opener without its closer is literal text"""
        assert parse("a {++unterminated") == []

    def test_interrupted_by_other_kind(self):
        """A different opener before the closer aborts the outer fence"""
        annotations = parse("{++a {--b--} c++}")
        assert len(annotations) == 1
        assert annotations[0].kind == 'delete'
        assert annotations[0].content == 'b'
        assert annotations[0].position == 5

    def test_substitute_without_separator(self):
        """A substitution needs ~> to be recognised"""
        assert parse("{~~abc~~}") == []

    def test_mismatched_closer(self):
        """The closer must match the opener's kind"""
        assert parse("{++abc--}") == []

    def test_strip_leaves_malformed_text(self):
        """Malformed fences pass through strip unchanged"""
        text = "Keep {++this and {~~that~~}"
        assert strip(text) == text


class TestReplies:
    """Whitespace-only gap between comments makes a reply"""

    def test_adjacent_comments_form_thread(self):
        """Replies point at the thread root, across whitespace and newlines"""
        text = "Text{>>A: q<<} {>>B: a<<}\n{>>C: more<<} then {>>D: new<<}"
        comments = parse(text)
        root = comments[0]
        assert root.reply_to is None
        assert comments[1].reply_to == root.position
        assert comments[2].reply_to == root.position
        assert comments[3].reply_to is None
        assert comments[3].is_reply is False

    def test_track_change_breaks_thread(self):
        """A track change between comments ends the thread"""
        comments = [a for a in parse("{>>A: q<<}{++x++}{>>B: a<<}") if a.kind == 'comment']
        assert comments[1].reply_to is None


class TestParseCommentBody:
    """Tests for parse_comment_body()"""

    def test_author_with_spaces(self):
        """Multi-word author names are allowed"""
        assert parse_comment_body("Jane Doe: check") == ("Jane Doe", "check", False)

    def test_time_is_not_author(self):
        """'10:30' has no whitespace after the colon"""
        assert parse_comment_body("meet at 10:30") == (None, "meet at 10:30", False)


class TestCountAnnotations:
    """Tests for count_annotations()"""

    def test_counts_per_kind(self):
        counts = count_annotations(SAMPLE + "{>>Bob: ok<<}")
        assert counts == {'insert': 1, 'delete': 1, 'substitute': 1, 'comment': 2, 'total': 5}

    def test_plain_text(self):
        assert count_annotations("nothing here")['total'] == 0


class TestStrip:
    """Tests for strip()"""

    def test_clean_reading(self):
        """Insertions kept, deletions dropped, substitutions resolved, comments dropped"""
        assert strip(SAMPLE) == "The big cat sat upon the mat."

    def test_keep_comments(self):
        """Comment fences survive when requested"""
        assert strip(SAMPLE, keep_comments=True) == "The big cat sat upon the mat.{>>Ann: nice<<}"

    def test_fence_formed_by_removal(self):
        """Removing a fence can reveal another; strip runs to a fixed point"""
        assert strip("{{--x--}++a++}") == "a"

    def test_idempotent(self):
        """strip(strip(t)) == strip(t)"""
        samples = [
            SAMPLE,
            "{{--x--}++a++}",
            "plain text",
            "{++a++}{--b--}{~~c~>d~~}{>>e<<}",
            "Broken {++fence and {--ok--} more",
            "{~~a~>b~>c~~} {>>x: y<<} {>>✓ z<<}",
        ]
        for text in samples:
            once = strip(text)
            assert strip(once) == once
            kept = strip(text, keep_comments=True)
            assert strip(kept, keep_comments=True) == kept


class TestFilterAnnotations:
    """Tests for filter_annotations() and the accessors"""

    TEXT = "A{>>Ann: one<<} B{>>✓ bob: two<<} C{>>three<<} {++x++}"

    def test_pending_only(self):
        """Track changes count as pending"""
        kinds = [a.kind for a in filter_annotations(parse(self.TEXT), pending_only=True)]
        assert kinds == ['comment', 'comment', 'insert']

    def test_resolved_only(self):
        result = filter_annotations(parse(self.TEXT), resolved_only=True)
        assert [a.content for a in result] == ['two']

    def test_author_case_insensitive(self):
        result = filter_annotations(parse(self.TEXT), author="BOB")
        assert [a.content for a in result] == ['two']

    def test_author_anonymous(self):
        """Unattributed annotations match 'Anonymous'"""
        result = filter_annotations(get_comments(self.TEXT), author="anonymous")
        assert [a.content for a in result] == ['three']

    def test_both_flags_yield_nothing(self):
        """Mutual exclusivity is not validated"""
        assert filter_annotations(parse(self.TEXT), pending_only=True, resolved_only=True) == []

    def test_get_comments_and_track_changes(self):
        assert len(get_comments(self.TEXT)) == 3
        assert len(get_comments(self.TEXT, pending_only=True)) == 2
        assert [a.kind for a in get_track_changes(self.TEXT)] == ['insert']


class TestTextView:
    """Tests for text_view() and annotation_at()"""

    TEXT = "a{++b++}c{--d--}e{>>x<<}"

    def test_accepted_view(self):
        view, offsets = text_view(self.TEXT, accept=True)
        assert view == "abce"
        assert offsets == [0, 4, 8, 16]

    def test_rejected_view(self):
        view, offsets = text_view(self.TEXT, accept=False)
        assert view == "acde"
        assert offsets == [0, 8, 12, 16]

    def test_substitute_views(self):
        text = "x{~~old~>new~~}y"
        assert text_view(text, accept=True)[0] == "xnewy"
        assert text_view(text, accept=False)[0] == "xoldy"

    def test_offsets_point_at_view_characters(self):
        view, offsets = text_view(SAMPLE, accept=True)
        assert all(SAMPLE[o] == ch for o, ch in zip(offsets, view))

    def test_annotation_at(self):
        annotations = parse(self.TEXT)
        assert annotation_at(annotations, 3).kind == 'insert'
        assert annotation_at(annotations, 1) is None
        assert annotation_at(annotations, 8) is None
