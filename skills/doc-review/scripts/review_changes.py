#!/usr/bin/env python3
"""
ABOUTME: Reviews inline annotations in a plain-text document
ABOUTME: List, count, strip, accept/reject, resolve, reply, clean up, or walk them interactively
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from markup_edit import (
    DocumentSession,
    InvalidTargetError,
    accept_all,
    cleanup_annotations,
    count_annotations,
    filter_annotations,
    get_comments,
    get_track_changes,
    parse,
    reject_all,
    resolve_all,
    strip,
)
from markup_edit.common import Annotation, format_text_preview
from utils import get_undo_limit, get_user_name, print_error, read_text, write_text


def _pick(items: List[Annotation], number: int, label: str) -> Annotation:
    """1-based lookup with an error naming the valid range."""
    if not items:
        raise InvalidTargetError(f"Document has no {label}s")
    if not 1 <= number <= len(items):
        raise InvalidTargetError(f"No {label} #{number}", valid=f"1-{len(items)}")
    return items[number - 1]


def _describe_change(change: Annotation) -> str:
    if change.kind == 'substitute':
        return (f"substitute '{format_text_preview(change.content)}' -> "
                f"'{format_text_preview(change.replacement)}'")
    return f"{change.kind} '{format_text_preview(change.content)}'"


def _describe_comment(comment: Annotation) -> str:
    status = 'resolved' if comment.resolved else 'pending'
    reply = '  ↳ ' if comment.is_reply else ''
    return f"{reply}[{status}] {comment.display_author}: {format_text_preview(comment.content, 60)}"


# ============================================================
# Commands
# ============================================================

def cmd_list(args, text: str) -> int:
    changes = get_track_changes(text)
    all_comments = get_comments(text)
    shown = filter_annotations(all_comments, pending_only=args.pending,
                               resolved_only=args.resolved, author=args.author)

    if not args.comments_only:
        print(f"Track changes: {len(changes)}")
        for number, change in enumerate(changes, 1):
            print(f"  {number:>3}. line {change.line}: {_describe_change(change)}")
    print(f"Comments: {len(shown)} of {len(all_comments)}")
    for comment in shown:
        number = all_comments.index(comment) + 1
        print(f"  {number:>3}. line {comment.line}: {_describe_comment(comment)}")
    return 0


def cmd_count(args, text: str) -> int:
    counts = count_annotations(text)
    comments = get_comments(text)
    pending = sum(1 for c in comments if not c.resolved)
    print(f"Insertions:    {counts['insert']}")
    print(f"Deletions:     {counts['delete']}")
    print(f"Substitutions: {counts['substitute']}")
    print(f"Comments:      {counts['comment']} ({pending} pending)")
    print(f"Total:         {counts['total']}")
    return 0


def cmd_strip(args, text: str) -> int:
    clean = strip(text, keep_comments=args.keep_comments)
    if args.output:
        write_text(args.output, clean)
        print(f"Saved to: {args.output}")
    else:
        sys.stdout.write(clean)
    return 0


def cmd_decide(args, session: DocumentSession) -> str:
    accept = args.command == 'accept'
    if args.all:
        batch = accept_all if accept else reject_all
        count = len(get_track_changes(session.text))
        session.apply(batch(session.text), f"{args.command} all")
        print(f"{'Accepted' if accept else 'Rejected'} {count} change(s)")
    else:
        change = _pick(get_track_changes(session.text), args.number, 'track change')
        session.apply_decision(change, accept)
        print(f"{'Accepted' if accept else 'Rejected'}: {_describe_change(change)}")
    return session.text


def cmd_resolve(args, session: DocumentSession) -> str:
    resolved = not args.reopen
    if args.all:
        count = sum(1 for c in get_comments(session.text) if c.resolved != resolved)
        session.apply(resolve_all(session.text, resolved=resolved), "resolve all")
        print(f"{'Resolved' if resolved else 'Reopened'} {count} comment(s)")
    else:
        comment = _pick(get_comments(session.text), args.number, 'comment')
        session.set_status(comment, resolved)
        print(f"{'Resolved' if resolved else 'Reopened'}: {_describe_comment(comment)}")
    return session.text


def cmd_reply(args, session: DocumentSession) -> str:
    comment = _pick(get_comments(session.text), args.number, 'comment')
    author = args.author or get_user_name()
    session.add_reply(comment, author, args.message)
    print(f"Replied to {comment.display_author} as {author}")
    return session.text


def cmd_cleanup(args, session: DocumentSession) -> str:
    before = count_annotations(session.text)['total']
    session.apply(cleanup_annotations(session.text), "cleanup")
    after = count_annotations(session.text)['total']
    print(f"Cleaned up {before - after} annotation(s), {after} left")
    return session.text


# ============================================================
# Interactive review
# ============================================================

NAVIGATION_KEYS = "n=next p=prev u=undo y=redo h=history w=write q=quit"


def _review_items(text: str) -> List[Annotation]:
    """Track changes and pending thread starts, in document order."""
    return [a for a in parse(text)
            if a.is_track_change or (not a.resolved and not a.is_reply)]


def _show_history(session: DocumentSession):
    for entry in session.history():
        marker = '>' if entry['current'] else ' '
        print(f"  {marker} {entry['index']}: {entry['description']}")


def cmd_review(args, session: DocumentSession, input_func=None) -> Optional[str]:
    """
    Walk track changes and pending comments one at a time.

    Every action goes through the session, so undo/redo step back and
    forward through them and move the position along.

    Returns:
        Text to save, or None when the user quits without saving
    """
    read = input_func or input
    author = args.author or get_user_name()
    cursor = 0
    done: List[Tuple[int, int]] = []     # (position before, position after) per action
    undone: List[Tuple[int, int]] = []

    while True:
        items = _review_items(session.text)
        ahead = [a for a in items if a.position >= cursor]
        item = ahead[0] if ahead else None
        if item is None:
            print(f"\nEnd of annotations ({len(items)} still open)")
            keys = "w=write p=prev u=undo y=redo h=history q=quit"
        else:
            number = items.index(item) + 1
            if item.is_track_change:
                print(f"\n[{number}/{len(items)}] line {item.line}: {_describe_change(item)}")
                keys = f"a=accept r=reject {NAVIGATION_KEYS}"
            else:
                print(f"\n[{number}/{len(items)}] line {item.line}: {_describe_comment(item)}")
                keys = f"v=resolve m=reply {NAVIGATION_KEYS}"
        try:
            answer = read(f"  {keys}: ").strip().lower()
        except EOFError:
            answer = 'q'

        if answer == 'q':
            return None
        if answer == 'w' or (item is None and answer == ''):
            return session.text
        if answer == 'u':
            if done and session.undo() is not None:
                position_before, position_after = done.pop()
                undone.append((position_before, position_after))
                cursor = position_before
                print("  Undone")
            else:
                print("  Nothing to undo")
            continue
        if answer == 'y':
            if undone and session.redo() is not None:
                position_before, position_after = undone.pop()
                done.append((position_before, position_after))
                cursor = position_after
                print("  Redone")
            else:
                print("  Nothing to redo")
            continue
        if answer == 'h':
            _show_history(session)
            continue
        if answer == 'p':
            here = item.position if item is not None else cursor
            behind = [a for a in items if a.position < here]
            if behind:
                cursor = behind[-1].position
            else:
                print("  Already at the first annotation")
            continue
        if item is None:
            print(f"  Unknown choice '{answer}'")
            continue
        if answer in ('n', 's', ''):
            cursor = item.position + 1
            continue

        if item.is_track_change and answer in ('a', 'r'):
            session.apply_decision(item, answer == 'a')
            position_after = item.position
        elif not item.is_track_change and answer == 'v':
            session.set_status(item, True)
            position_after = item.position
        elif not item.is_track_change and answer == 'm':
            try:
                message = read("  Reply: ").strip()
            except EOFError:
                message = ''
            if not message:
                print("  Empty reply, nothing added")
                continue
            session.add_reply(item, author, message)
            position_after = item.position + 1
        else:
            print(f"  Unknown choice '{answer}'")
            continue
        done.append((cursor, position_after))
        undone.clear()
        cursor = position_after


MUTATING_COMMANDS = {
    'accept': cmd_decide,
    'reject': cmd_decide,
    'resolve': cmd_resolve,
    'reply': cmd_reply,
    'cleanup': cmd_cleanup,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Review inline annotations ({++ ++} {-- --} {~~ ~> ~~} {>> <<})"
    )
    sub = parser.add_subparsers(dest='command', required=True)

    p_list = sub.add_parser('list', help='List track changes and comments')
    p_list.add_argument('file')
    status = p_list.add_mutually_exclusive_group()
    status.add_argument('--pending', action='store_true', help='Only pending comments')
    status.add_argument('--resolved', action='store_true', help='Only resolved comments')
    p_list.add_argument('--author', help='Only comments by this author')
    p_list.add_argument('--comments-only', action='store_true', help='Do not list track changes')

    p_count = sub.add_parser('count', help='Count annotations per kind')
    p_count.add_argument('file')

    p_strip = sub.add_parser('strip', help='Write the clean reading copy')
    p_strip.add_argument('file')
    p_strip.add_argument('-o', '--output', help='Output file (default: stdout)')
    p_strip.add_argument('--keep-comments', action='store_true', help='Keep comment fences')

    for name, help_text in (('accept', 'Accept track changes'), ('reject', 'Reject track changes')):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('file')
        target = p.add_mutually_exclusive_group(required=True)
        target.add_argument('-n', '--number', type=int, help='Track change number (see list)')
        target.add_argument('-a', '--all', action='store_true', help='All track changes')

    p_resolve = sub.add_parser('resolve', help='Mark comments resolved')
    p_resolve.add_argument('file')
    target = p_resolve.add_mutually_exclusive_group(required=True)
    target.add_argument('-n', '--number', type=int, help='Comment number (see list)')
    target.add_argument('-a', '--all', action='store_true', help='All comments')
    p_resolve.add_argument('--reopen', action='store_true', help='Mark pending again instead')

    p_reply = sub.add_parser('reply', help='Reply to a comment')
    p_reply.add_argument('file')
    p_reply.add_argument('-n', '--number', type=int, required=True, help='Comment number (see list)')
    p_reply.add_argument('-m', '--message', required=True, help='Reply text')
    p_reply.add_argument('--author', help='Reply author (default: $DOC_REVIEW_AUTHOR or login name)')

    p_cleanup = sub.add_parser('cleanup', help='Drop empty fences and merge split substitutions')
    p_cleanup.add_argument('file')

    p_review = sub.add_parser('review', help='Walk track changes and pending comments interactively')
    p_review.add_argument('file')
    p_review.add_argument('--author', help='Reply author (default: $DOC_REVIEW_AUTHOR or login name)')

    for p in (p_resolve, p_reply, p_cleanup, p_review) + tuple(sub.choices[n] for n in ('accept', 'reject')):
        p.add_argument('-o', '--output', help='Output file (default: overwrite input)')
        p.add_argument('--dry-run', action='store_true', help='Show result, do not save')

    return parser


def main(argv=None, input_func=None) -> int:
    args = build_parser().parse_args(argv)

    path = Path(args.file)
    if not path.exists():
        print(f"Error: File not found: {args.file}", file=sys.stderr)
        return 1
    text = read_text(path)

    if args.command == 'list':
        return cmd_list(args, text)
    if args.command == 'count':
        return cmd_count(args, text)
    if args.command == 'strip':
        return cmd_strip(args, text)

    try:
        session = DocumentSession(text, max_snapshots=get_undo_limit())
        if args.command == 'review':
            new_text = cmd_review(args, session, input_func=input_func)
        else:
            new_text = MUTATING_COMMANDS[args.command](args, session)
    except InvalidTargetError as e:
        print_error(
            f"Cannot {args.command}: target not found",
            str(e),
            f"  1. Run: {Path(sys.argv[0]).name} list {args.file}\n"
            "  2. Use a number from that listing"
        )
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if new_text is None:
        print("\nQuit: nothing saved")
        return 0
    if args.dry_run:
        print("\nDry run: nothing saved")
        return 0
    output_path = Path(args.output) if args.output else path
    write_text(output_path, new_text)
    print(f"Saved to: {output_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
