import pytest

from ingestion.chunker import FixedWindowChunker


@pytest.fixture
def chunker():
    return FixedWindowChunker(1000, 200)


def test_2500_chars_gives_three_windows(chunker):
    text = "".join(chr(ord("a") + i % 26) for i in range(2500))
    chunks = chunker.split(text)

    assert [(c.start_char, c.end_char) for c in chunks] == [(0, 1000), (800, 1800), (1600, 2500)]
    assert [c.index for c in chunks] == [0, 1, 2]
    assert all(c.content == text[c.start_char:c.end_char] for c in chunks)
    assert chunks[0].metadata == {"start_char": 0, "end_char": 1000}


def test_consecutive_windows_overlap(chunker):
    chunks = chunker.split("x" * 5000)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_char == prev.start_char + chunker.step
        assert prev.end_char - nxt.start_char == 200
    assert chunks[-1].end_char == 5000


@pytest.mark.parametrize("length", [1, 999, 1000, 1001, 1800, 1801, 2500, 10_000])
def test_expected_count_matches_split(chunker, length):
    assert len(chunker.split("y" * length)) == chunker.expected_count(length)


def test_short_and_empty_text(chunker):
    [only] = chunker.split("hello")
    assert (only.start_char, only.end_char) == (0, 5)
    assert chunker.split("") == []


@pytest.mark.parametrize("size,overlap", [(100, 100), (100, 150), (0, 0), (100, -1)])
def test_invalid_configuration(size, overlap):
    with pytest.raises(ValueError):
        FixedWindowChunker(size, overlap)
