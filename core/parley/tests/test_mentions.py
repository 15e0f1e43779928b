import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from parley.context import FileResolver, MentionParser


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as root:
        Path(root, "notes").mkdir()
        Path(root, "notes", "todo.md").write_text("- buy milk")
        Path(root, "readme.md").write_text("Hello world")
        yield root


@pytest.fixture
def parser(workspace):
    return MentionParser(FileResolver(roots=[workspace]))


def test_mention_with_offsets(parser):
    text = "Look at @notes/todo.md please"
    mentions = parser.parse_mentions(text)

    assert len(mentions) == 1
    mention = mentions[0]
    assert mention.original_token == "@notes/todo.md"
    assert mention.reference_path == "notes/todo.md"
    assert text[mention.start_offset:mention.end_offset] == "@notes/todo.md"
    assert mention.is_resolvable


def test_token_without_extension_is_not_a_mention(parser):
    assert parser.parse_mentions("ping @notes") == []
    assert parser.parse_mentions("trailing @todo.") == []


def test_trailing_punctuation_is_excluded(parser):
    mentions = parser.parse_mentions("Summarize @readme.md.")
    assert [m.reference_path for m in mentions] == ["readme.md"]


def test_back_to_back_mentions_are_separate(parser):
    mentions = parser.parse_mentions("@readme.md@notes/todo.md")

    assert [m.reference_path for m in mentions] == ["readme.md", "notes/todo.md"]
    assert mentions[0].end_offset == mentions[1].start_offset
    assert all(m.is_resolvable for m in mentions)


def test_mentions_are_ordered_and_non_overlapping(parser):
    text = "@a.py, @b/c.txt and @readme.md then @d.json@e.md"
    mentions = parser.parse_mentions(text)

    assert len(mentions) == 5
    for prev, cur in zip(mentions, mentions[1:]):
        assert prev.start_offset < cur.start_offset
        assert prev.end_offset <= cur.start_offset


def test_unknown_file_is_not_resolvable(parser):
    mentions = parser.parse_mentions("what about @missing.md?")
    assert len(mentions) == 1
    assert not mentions[0].is_resolvable


def test_empty_text_yields_nothing(parser):
    assert parser.parse_mentions("") == []
    assert parser.parse_mentions("no mentions here") == []


def test_resolvability_is_delegated_to_resolver():
    resolver = MagicMock()
    resolver.is_known_path.side_effect = lambda path: path == "yes.md"
    parser = MentionParser(resolver)

    mentions = list(parser.iter_mentions("@yes.md @no.md"))

    assert [m.is_resolvable for m in mentions] == [True, False]
    assert [c.args[0] for c in resolver.is_known_path.call_args_list] == ["yes.md", "no.md"]
