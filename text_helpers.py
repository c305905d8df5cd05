import re
from collections import OrderedDict


LINK_PATTERN = re.compile(r"!?\[([^\]]*)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")
HEADING_PATTERN = re.compile(r"^\s{0,3}#{1,6}\s+")
LIST_MARKER_PATTERN = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(?:\[[ xX]\]\s+)?")
QUOTE_PATTERN = re.compile(r"^\s*>\s?")
EMPHASIS_PATTERN = re.compile(r"(\*\*|\*|~~)(?=\S)(.+?)(?<=\S)\1")
UNDERSCORE_EMPHASIS_PATTERN = re.compile(r"(?<!\w)(__|_)(?=\S)(.+?)(?<=\S)\1(?!\w)")
INLINE_CODE_PATTERN = re.compile(r"`([^`]*)`")
RULE_PATTERN = re.compile(r"^\s*([-*_])(\s*\1){2,}\s*$")

DEFAULT_NOTE_CATEGORY = 'Misc'
NOTE_NODE_SIZE = 10
CATEGORY_NODE_SIZE = 20
LINK_DISTANCE = 50


def markdown_to_plain_text(raw_markdown: str) -> str:
    """Strip markdown syntax, keeping link labels and code block contents."""
    if not raw_markdown:
        return ""
    cleaned_lines = []
    blank_streak = 0
    for line in str(raw_markdown).replace("\r", "\n").split("\n"):
        if FENCE_PATTERN.match(line) or RULE_PATTERN.match(line):
            continue
        line = HEADING_PATTERN.sub("", line)
        line = QUOTE_PATTERN.sub("", line)
        line = LIST_MARKER_PATTERN.sub("", line)
        line = LINK_PATTERN.sub(lambda m: m.group(1), line)
        line = INLINE_CODE_PATTERN.sub(lambda m: m.group(1), line)
        line = EMPHASIS_PATTERN.sub(lambda m: m.group(2), line)
        line = UNDERSCORE_EMPHASIS_PATTERN.sub(lambda m: m.group(2), line)
        if not line.strip():
            blank_streak += 1
            if blank_streak > 1:
                continue
            cleaned_lines.append("")
            continue
        blank_streak = 0
        cleaned_lines.append(re.sub(r"\s+", " ", line).strip())
    return "\n".join(cleaned_lines).strip()


def note_snippet(raw_markdown: str, limit: int = 140) -> str:
    text = markdown_to_plain_text(raw_markdown).replace("\n", " ")
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "…"


def note_category(note) -> str:
    return note.get('category') or DEFAULT_NOTE_CATEGORY


def group_notes_by_category(notes):
    """Directory listing: categories in first-seen order, notes under each."""
    groups = OrderedDict()
    for note in notes:
        groups.setdefault(note_category(note), []).append({
            'id': note.get('id'),
            'title': note.get('title') or 'Untitled Note',
        })
    return [{'category': name, 'notes': items} for name, items in groups.items()]


def build_note_graph(notes, category=None):
    """Nodes for notes and their categories, with a link from each note to its category."""
    if category:
        notes = [n for n in notes if note_category(n) == category]
    nodes = [{'id': n.get('id'), 'name': n.get('title') or 'Untitled Note', 'val': NOTE_NODE_SIZE}
             for n in notes]
    seen = []
    for note in notes:
        name = note_category(note)
        if name not in seen:
            seen.append(name)
    nodes.extend({'id': name, 'name': name, 'val': CATEGORY_NODE_SIZE, 'isCategory': True} for name in seen)
    links = [{'source': n.get('id'), 'target': note_category(n), 'distance': LINK_DISTANCE} for n in notes]
    return {'nodes': nodes, 'links': links}
