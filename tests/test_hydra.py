import struct

import pytest

from sfplayer.hydra import GenAmount, SoundFontError, read_soundfont

SAMPLES = [0, 32767, -32767, 16384, 0, -16384, 100, -100, 0, 0]


def _chunk(cid, payload):
    return cid + struct.pack("<I", len(payload)) + payload


def _list(kind, *chunks):
    return _chunk(b"LIST", kind + b"".join(chunks))


def _shdr(name, start, end, sloop, eloop, rate, pitch, corr, link, stype):
    return struct.pack("<20sIIIIIBbHH", name, start, end, sloop, eloop, rate, pitch, corr, link, stype)


def _pdta_chunks(sample_type=1):
    return {
        b"phdr": struct.pack("<20sHHHIII", b"Piano", 3, 8, 0, 0, 0, 0)
        + struct.pack("<20sHHHIII", b"EOP", 255, 255, 1, 0, 0, 0),
        b"pbag": struct.pack("<HH", 0, 0) + struct.pack("<HH", 1, 0),
        b"pmod": struct.pack("<HHhHH", 0, 0, 0, 0, 0),
        b"pgen": struct.pack("<HH", 41, 0) + struct.pack("<HH", 0, 0),
        b"inst": struct.pack("<20sH", b"Sine", 0) + struct.pack("<20sH", b"EOI", 1),
        b"ibag": struct.pack("<HH", 0, 0) + struct.pack("<HH", 2, 0),
        b"imod": struct.pack("<HHhHH", 0, 0, 0, 0, 0),
        b"igen": struct.pack("<HBB", 43, 36, 96) + struct.pack("<HH", 53, 0) + struct.pack("<HH", 0, 0),
        b"shdr": _shdr(b"Sine", 0, 8, 2, 6, 44100, 60, -5, 0, sample_type)
        + _shdr(b"EOS", 0, 0, 0, 0, 0, 0, 0, 0, 0),
    }


def build_sf2(chunks=None, smpl=None, with_samples=True, extra_pdta=b""):
    chunks = _pdta_chunks() if chunks is None else chunks
    if smpl is None:
        smpl = struct.pack(f"<{len(SAMPLES)}h", *SAMPLES)
    pdta = _list(b"pdta", *(_chunk(k, v) for k, v in chunks.items()), extra_pdta)
    sdta = _list(b"sdta", _chunk(b"smpl", smpl)) if with_samples else _list(b"sdta")
    info = _list(b"INFO", _chunk(b"ifil", struct.pack("<HH", 2, 1)))
    return _chunk(b"RIFF", b"sfbk" + info + sdta + pdta)


def test_preset_headers_are_read():
    hydra = read_soundfont(build_sf2())
    assert [p.name for p in hydra.preset_headers] == ["Piano", "EOP"]
    assert hydra.preset_headers[0].preset == 3
    assert hydra.preset_headers[0].bank == 8
    assert hydra.preset_headers[1].bag_index == 1


def test_generators_and_bags():
    hydra = read_soundfont(build_sf2())
    assert hydra.preset_generators[0].oper == 41
    key_range = hydra.instrument_generators[0]
    assert key_range.oper == 43
    assert (key_range.amount.lo, key_range.amount.hi) == (36, 96)
    assert hydra.instrument_generators[1].oper == 53
    assert hydra.instrument_bags[1].gen_index == 2
    assert [i.name for i in hydra.instruments] == ["Sine", "EOI"]


def test_sample_header_fields():
    header = read_soundfont(build_sf2()).sample_headers[0]
    assert header.name == "Sine"
    assert (header.start, header.end, header.start_loop, header.end_loop) == (0, 8, 2, 6)
    assert header.sample_rate == 44100
    assert header.original_pitch == 60
    assert header.pitch_correction == -5


def test_samples_are_scaled_to_unit_range():
    samples = read_soundfont(build_sf2()).samples
    assert len(samples) == len(SAMPLES)
    assert samples[0] == 0.0
    assert samples[1] == 1.0
    assert samples[2] == -1.0
    assert all(-1.0 <= value <= 1.0 for value in samples)
    assert samples[3] > 0 > samples[5]


def test_gen_amount_signed_view():
    assert GenAmount(0xFFFF).short == -1
    assert GenAmount(0x7FFF).short == 0x7FFF


@pytest.mark.parametrize("lo, hi", [(0, 127), (36, 96), (255, 0)])
def test_gen_amount_range_round_trip(lo, hi):
    amount = GenAmount(lo | (hi << 8))
    assert (amount.lo, amount.hi) == (lo, hi)


def test_bytearray_input_matches_bytes():
    data = build_sf2()
    assert read_soundfont(bytearray(data)) == read_soundfont(data)


@pytest.mark.parametrize("data", [b"", b"RIFF\x04\x00\x00\x00WAVE", b"garbage!garbage!"])
def test_not_a_soundfont(data):
    with pytest.raises(SoundFontError):
        read_soundfont(data)


@pytest.mark.parametrize("missing", list(_pdta_chunks()))
def test_missing_table_is_incomplete(missing):
    chunks = _pdta_chunks()
    del chunks[missing]
    with pytest.raises(SoundFontError, match="incomplete"):
        read_soundfont(build_sf2(chunks))


def test_table_with_bad_size_is_ignored():
    chunks = _pdta_chunks()
    chunks[b"pbag"] += b"\x00\x00"
    with pytest.raises(SoundFontError, match="pbag"):
        read_soundfont(build_sf2(chunks))


def test_missing_sample_data():
    with pytest.raises(SoundFontError, match="sample data"):
        read_soundfont(build_sf2(with_samples=False))


def test_unknown_chunk_is_skipped():
    plain = read_soundfont(build_sf2())
    extra = read_soundfont(build_sf2(extra_pdta=_chunk(b"xtra", b"\x01\x02\x03\x04")))
    assert extra == plain


def test_vorbis_sample_is_rejected():
    smpl = b"OggS" + bytes(16)
    with pytest.raises(SoundFontError, match="Vorbis"):
        read_soundfont(build_sf2(_pdta_chunks(sample_type=0x10), smpl=smpl))


def test_compressed_sample_without_ogg_header_is_cleared():
    hydra = read_soundfont(build_sf2(_pdta_chunks(sample_type=0x10)))
    header = hydra.sample_headers[0]
    assert (header.start, header.end, header.start_loop, header.end_loop) == (0, 0, 0, 0)
    assert len(hydra.samples) == len(SAMPLES)


def test_name_without_terminator_keeps_all_characters():
    chunks = _pdta_chunks()
    long_name = b"ABCDEFGHIJKLMNOPQRST"
    chunks[b"inst"] = struct.pack("<20sH", long_name, 0) + struct.pack("<20sH", b"EOI", 1)
    hydra = read_soundfont(build_sf2(chunks))
    assert hydra.instruments[0].name == long_name.decode()