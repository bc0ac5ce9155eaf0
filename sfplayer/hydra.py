"""Reading the RIFF structure and sample data of SoundFont 2 files."""

from __future__ import annotations

import struct
import sys
from array import array
from dataclasses import dataclass, field
from typing import Callable, NamedTuple, Optional


class SoundFontError(ValueError):
    """Raised when data cannot be read as a SoundFont."""


@dataclass(frozen=True)
class GenAmount:
    """A generator amount: one 16-bit word seen as a range, a signed or an unsigned value."""

    word: int

    @property
    def lo(self) -> int:
        return self.word & 0xFF

    @property
    def hi(self) -> int:
        return (self.word >> 8) & 0xFF

    @property
    def short(self) -> int:
        return self.word - 0x10000 if self.word & 0x8000 else self.word


@dataclass(frozen=True)
class PresetHeader:
    name: str
    preset: int
    bank: int
    bag_index: int
    library: int = 0
    genre: int = 0
    morphology: int = 0


@dataclass(frozen=True)
class Bag:
    gen_index: int
    mod_index: int


@dataclass(frozen=True)
class Generator:
    oper: int
    amount: GenAmount


@dataclass(frozen=True)
class Instrument:
    name: str
    bag_index: int


@dataclass(frozen=True)
class _Modulator:
    src_oper: int
    dest_oper: int
    amount: int
    amount_src_oper: int
    trans_oper: int


@dataclass
class SampleHeader:
    name: str
    start: int
    end: int
    start_loop: int
    end_loop: int
    sample_rate: int
    original_pitch: int
    pitch_correction: int
    sample_link: int
    sample_type: int


@dataclass
class Hydra:
    """The articulation tables of a SoundFont together with its decoded samples."""

    preset_headers: list[PresetHeader]
    preset_bags: list[Bag]
    preset_modulators: list[_Modulator]
    preset_generators: list[Generator]
    instruments: list[Instrument]
    instrument_bags: list[Bag]
    instrument_modulators: list[_Modulator]
    instrument_generators: list[Generator]
    sample_headers: list[SampleHeader]
    samples: array = field(default_factory=lambda: array("f"))


def _name(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("latin-1")


class _RecordSpec(NamedTuple):
    attr: str
    layout: struct.Struct
    build: Callable[..., object]


_RECORDS: dict[bytes, _RecordSpec] = {
    b"phdr": _RecordSpec(
        "preset_headers",
        struct.Struct("<20sHHHIII"),
        lambda name, *rest: PresetHeader(_name(name), *rest),
    ),
    b"pbag": _RecordSpec("preset_bags", struct.Struct("<HH"), Bag),
    b"pmod": _RecordSpec("preset_modulators", struct.Struct("<HHhHH"), _Modulator),
    b"pgen": _RecordSpec(
        "preset_generators",
        struct.Struct("<HH"),
        lambda oper, word: Generator(oper, GenAmount(word)),
    ),
    b"inst": _RecordSpec(
        "instruments",
        struct.Struct("<20sH"),
        lambda name, bag: Instrument(_name(name), bag),
    ),
    b"ibag": _RecordSpec("instrument_bags", struct.Struct("<HH"), Bag),
    b"imod": _RecordSpec("instrument_modulators", struct.Struct("<HHhHH"), _Modulator),
    b"igen": _RecordSpec(
        "instrument_generators",
        struct.Struct("<HH"),
        lambda oper, word: Generator(oper, GenAmount(word)),
    ),
    b"shdr": _RecordSpec(
        "sample_headers",
        struct.Struct("<20sIIIIIBbHH"),
        lambda name, *rest: SampleHeader(_name(name), *rest),
    ),
}


class _Stream:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def read(self, size: int) -> bytes:
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk

    def skip(self, count: int) -> bool:
        if self._pos + count > len(self._data):
            return False
        self._pos += count
        return True


@dataclass
class _Chunk:
    id: bytes
    size: int


def _valid_id(cid: bytes) -> bool:
    return len(cid) == 4 and 0x20 < cid[0] < 0x7A


def _read_chunk(stream: _Stream, parent: Optional[_Chunk]) -> Optional[_Chunk]:
    if parent is not None and parent.size < 8:
        return None
    cid = stream.read(4)
    if not _valid_id(cid):
        return None
    raw_size = stream.read(4)
    if len(raw_size) < 4:
        return None
    chunk = _Chunk(cid, int.from_bytes(raw_size, "little"))
    if parent is not None:
        if 8 + chunk.size > parent.size:
            return None
        parent.size -= 8 + chunk.size
    is_riff, is_list = cid == b"RIFF", cid == b"LIST"
    if is_riff and parent is not None:
        return None
    if not is_riff and not is_list:
        return chunk
    sub_id = stream.read(4)
    if not _valid_id(sub_id):
        return None
    chunk.id = sub_id
    chunk.size = (chunk.size - 4) & 0xFFFFFFFF
    return chunk


def _read_records(stream: _Stream, spec: _RecordSpec, size: int) -> list:
    payload = stream.read(size).ljust(size, b"\0")
    return [spec.build(*fields) for fields in spec.layout.iter_unpack(payload)]


def _decode_samples(raw: bytes, headers: list[SampleHeader]) -> array:
    total = len(raw) // 2
    shorts = array("h")
    shorts.frombytes(raw[:total * 2])
    if sys.byteorder == "big":
        shorts.byteswap()
    out = array("f")
    count = 0
    last = len(headers) - 1
    for index, header in enumerate(headers):
        if header.sample_type & 0x30:
            start = header.start
            if start + 4 > header.end or raw[start:start + 4] != b"OggS":
                header.start = header.end = header.start_loop = header.end_loop = 0
                continue
            raise SoundFontError("Vorbis-compressed samples are not supported")
        stop = max(header.end, header.end_loop)
        if stop < count or index == last or stop > total:
            stop = total
        if stop <= count:
            continue
        out.extend(value / 32767.0 for value in shorts[count:stop])
        count = stop
    return out


def read_soundfont(data: bytes) -> Hydra:
    """Parse SoundFont bytes into their tables and floating-point samples."""
    stream = _Stream(bytes(data))
    head = _read_chunk(stream, None)
    if head is None or head.id != b"sfbk":
        raise SoundFontError("not a SoundFont: missing sfbk header")

    tables: dict[str, list] = {}
    raw_samples: Optional[bytes] = None
    while (section := _read_chunk(stream, head)) is not None:
        if section.id == b"pdta":
            while (chunk := _read_chunk(stream, section)) is not None:
                spec = _RECORDS.get(chunk.id)
                if spec is not None and chunk.size % spec.layout.size == 0:
                    tables[spec.attr] = _read_records(stream, spec, chunk.size)
                else:
                    stream.skip(chunk.size)
        elif section.id == b"sdta":
            while (chunk := _read_chunk(stream, section)) is not None:
                if chunk.id in (b"smpl", b"smpo") and raw_samples is None and chunk.size >= 2:
                    if chunk.id == b"smpo":
                        raise SoundFontError("Vorbis-compressed samples are not supported")
                    raw = stream.read(chunk.size)
                    if not raw:
                        raise SoundFontError("sample data could not be read")
                    raw_samples = raw.ljust(chunk.size, b"\0")
                else:
                    stream.skip(chunk.size)
        else:
            stream.skip(section.size)

    missing = [cid.decode() for cid, spec in _RECORDS.items() if spec.attr not in tables]
    if missing:
        raise SoundFontError(f"incomplete SoundFont: missing {', '.join(missing)}")
    if raw_samples is None:
        raise SoundFontError("SoundFont has no sample data")

    samples = _decode_samples(raw_samples, tables["sample_headers"])
    return Hydra(samples=samples, **tables)