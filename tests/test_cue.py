"""Tests for cue sheet parsing."""

from pathlib import Path

import pytest

from romcomp.cue import (
    CueSyntaxError,
    decode_cue_bytes,
    is_cue_sheet,
    parse_cue_sheet,
    read_cue_sheet,
    rewrite_file_names,
)
from romcomp.errors import ErrorKind


MULTI_TRACK = """REM GENRE Platform
REM DATE 1997
CATALOG 0000000000000
PERFORMER "Nobody"
TITLE "Some Game"
FILE "Some Game (Track 1).bin" BINARY
  TRACK 01 MODE2/2352
    INDEX 01 00:00:00
FILE "Some Game (Track 2).bin" BINARY
  TRACK 02 AUDIO
    FLAGS DCP
    PREGAP 00:02:00
    INDEX 01 00:00:00
"""


def test_parse_multi_track_sheet():
    files = parse_cue_sheet(MULTI_TRACK)
    assert [f.name for f in files] == ["Some Game (Track 1).bin", "Some Game (Track 2).bin"]
    assert files[0].tracks == [(1, "MODE2/2352")]
    assert files[1].tracks == [(2, "AUDIO")]
    assert all(f.file_type == "BINARY" for f in files)


def test_parse_is_case_insensitive_and_accepts_bare_names():
    text = "file game.bin binary\r\n  track 1 mode1/2048\r\n    index 1 00:00:00\r\n"
    files = parse_cue_sheet(text)
    assert files[0].name == "game.bin"
    assert files[0].tracks == [(1, "MODE1/2048")]


def test_one_file_many_tracks():
    text = 'FILE "disc.bin" BINARY\n  TRACK 01 MODE1/2352\n    INDEX 01 00:00:00\n  TRACK 02 AUDIO\n    INDEX 01 10:00:00\n'
    files = parse_cue_sheet(text)
    assert len(files) == 1
    assert [t[0] for t in files[0].tracks] == [1, 2]


@pytest.mark.parametrize(
    "text",
    [
        "TRACK 01 MODE1/2352\nFILE \"a.bin\" BINARY\n",
        'FILE "a.bin" BINARY\n  TRACK 01 MODE9/1234\n',
        'FILE "a.bin" BINARY\n  TRACK 01 AUDIO\n  BOGUS line\n',
        'FILE "a.bin" BINARY\n',
        'FILE "a.bin" BINARY\n  INDEX 01 00:00:00\n',
        "REM only a comment\n",
    ],
)
def test_parse_rejects_malformed_sheets(text):
    with pytest.raises(CueSyntaxError) as ei:
        parse_cue_sheet(text)
    assert ei.value.kind is ErrorKind.UNREADABLE_INPUT


def test_is_cue_sheet():
    assert is_cue_sheet(MULTI_TRACK.encode("utf-8"))
    assert is_cue_sheet(b"\xef\xbb\xbf" + MULTI_TRACK.encode("utf-8"))
    assert not is_cue_sheet(b"\x00\xff\xff\xff" + bytes(100))
    assert not is_cue_sheet(b"just some notes\nabout a game\n")


def test_decode_falls_back_to_latin1():
    data = 'FILE "Pok\xe9mon.bin" BINARY\n'.encode("latin-1")
    assert decode_cue_bytes(data) == 'FILE "Pok\xe9mon.bin" BINARY\n'
    assert decode_cue_bytes(b"a\x00b") is None


def test_windows_separators_are_normalized():
    files = parse_cue_sheet('FILE "tracks\\game.bin" BINARY\n  TRACK 01 MODE1/2352\n')
    assert files[0].relative_path() == Path("tracks") / "game.bin"


def test_read_cue_sheet_from_disk(tmp_path):
    p = tmp_path / "game.cue.txt"
    p.write_text(MULTI_TRACK, encoding="utf-8")
    assert len(read_cue_sheet(p)) == 2


def test_read_cue_sheet_rejects_binary(tmp_path):
    p = tmp_path / "game.cue"
    p.write_bytes(bytes(64))
    with pytest.raises(CueSyntaxError):
        read_cue_sheet(p)


def test_rewrite_file_names_keeps_layout(tmp_path):
    out = rewrite_file_names(MULTI_TRACK, tmp_path)
    lines = out.splitlines()
    assert f'FILE "{(tmp_path / "Some Game (Track 1).bin").resolve()}" BINARY' in lines
    assert "    PREGAP 00:02:00" in lines
    assert "REM GENRE Platform" in lines
    assert len(lines) == len(MULTI_TRACK.splitlines())
