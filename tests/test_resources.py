from pathlib import Path

import pytest

from sfplayer.resources import SoundFont


def test_data_round_trip():
    font = SoundFont(b"sfbk-bytes")
    assert font.data == b"sfbk-bytes"
    assert len(font) == len(b"sfbk-bytes")


def test_default_is_empty():
    font = SoundFont()
    assert font.data == b""
    assert len(font) == 0


def test_data_is_copied_from_mutable_buffer():
    buffer = bytearray(b"abcd")
    font = SoundFont(buffer)
    buffer[0] = ord("z")
    assert font.data == b"abcd"
    assert isinstance(font.data, bytes)


def test_assigning_data_copies():
    font = SoundFont()
    buffer = bytearray(b"1234")
    font.data = buffer
    buffer[:] = b"0000"
    assert font.data == b"1234"


def test_from_file(tmp_path: Path):
    path = tmp_path / "font.sf2"
    path.write_bytes(b"\x00\x01\x02RIFF")
    assert SoundFont.from_file(path).data == b"\x00\x01\x02RIFF"
    assert SoundFont.from_file(str(path)) == SoundFont(b"\x00\x01\x02RIFF")


def test_from_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        SoundFont.from_file(tmp_path / "absent.sf2")