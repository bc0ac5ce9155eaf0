"""Building playable presets and their regions from SoundFont tables."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence

from sfplayer.hydra import Bag, Generator, Hydra, Instrument, PresetHeader
from sfplayer.region import Region, timecents_to_seconds

_GEN_INSTRUMENT = 41
_GEN_SAMPLE_ID = 53
_UINT_MASK = 0xFFFFFFFF
_NAME_LENGTH = 19


@dataclass
class Preset:
    """A bank/preset slot with the regions it plays."""

    name: str
    preset: int
    bank: int
    regions: list[Region] = field(default_factory=list)


def _clone(region: Region) -> Region:
    return replace(region, ampenv=replace(region.ampenv), modenv=replace(region.modenv))


def _bag_range(
    owners: Sequence[PresetHeader] | Sequence[Instrument], index: int, bag_count: int
) -> range:
    start = owners[index].bag_index
    stop = owners[index + 1].bag_index if index + 1 < len(owners) else bag_count
    return range(min(start, bag_count), min(stop, bag_count))


def _generators(bags: Sequence[Bag], index: int, gens: Sequence[Generator]) -> Sequence[Generator]:
    start = bags[index].gen_index
    stop = bags[index + 1].gen_index if index + 1 < len(bags) else len(gens)
    return gens[start:stop]


def _lfo_delay(value: float) -> float:
    return 0.0 if value < -11950.0 else timecents_to_seconds(value)


def _finish_zone(zone: Region, preset_region: Region, hydra: Hydra, sample_id: int,
                 sample_count: int) -> bool:
    """Combine a zone with its preset zone and sample header, in place."""
    if zone.hikey < preset_region.lokey or zone.lokey > preset_region.hikey:
        return False
    if zone.hivel < preset_region.lovel or zone.lovel > preset_region.hivel:
        return False
    if sample_id >= len(hydra.sample_headers):
        return False
    zone.lokey = max(zone.lokey, preset_region.lokey)
    zone.hikey = min(zone.hikey, preset_region.hikey)
    zone.lovel = max(zone.lovel, preset_region.lovel)
    zone.hivel = min(zone.hivel, preset_region.hivel)

    zone.merge(preset_region)

    zone.ampenv.to_seconds(True)
    zone.modenv.to_seconds(False)
    zone.delay_mod_lfo = _lfo_delay(zone.delay_mod_lfo)
    zone.delay_vib_lfo = _lfo_delay(zone.delay_vib_lfo)

    header = hydra.sample_headers[sample_id]
    zone.offset = (zone.offset + header.start) & _UINT_MASK
    zone.end = (zone.end + header.end) & _UINT_MASK
    zone.loop_start = (zone.loop_start + header.start_loop) & _UINT_MASK
    zone.loop_end = (zone.loop_end + header.end_loop) & _UINT_MASK
    if header.end_loop > 0:
        zone.loop_end = (zone.loop_end - 1) & _UINT_MASK
    if zone.loop_end > sample_count:
        zone.loop_end = sample_count
    if zone.pitch_keycenter == -1:
        zone.pitch_keycenter = header.original_pitch
    zone.tune += header.pitch_correction
    zone.sample_rate = header.sample_rate
    if zone.end and zone.end < sample_count:
        zone.end += 1
    else:
        zone.end = sample_count
    return True


def _instrument_regions(hydra: Hydra, which: int, preset_region: Region,
                        sample_count: int) -> list[Region]:
    regions: list[Region] = []
    inst_region = Region.cleared(False)
    bags = _bag_range(hydra.instruments, which, len(hydra.instrument_bags))
    for bag_index in bags:
        zone = _clone(inst_region)
        had_sample = False
        for gen in _generators(hydra.instrument_bags, bag_index, hydra.instrument_generators):
            if gen.oper == _GEN_SAMPLE_ID:
                if _finish_zone(zone, preset_region, hydra, gen.amount.word, sample_count):
                    regions.append(_clone(zone))
                    had_sample = True
            else:
                zone.apply_generator(gen.oper, gen.amount)
        # A leading zone without a sample is the instrument's global zone.
        if bag_index == bags.start and not had_sample:
            inst_region = zone
    return regions


def _preset_regions(hydra: Hydra, header_index: int, sample_count: int) -> list[Region]:
    regions: list[Region] = []
    global_region = Region.cleared(True)
    bags = _bag_range(hydra.preset_headers, header_index, len(hydra.preset_bags))
    for bag_index in bags:
        preset_region = _clone(global_region)
        had_instrument = False
        for gen in _generators(hydra.preset_bags, bag_index, hydra.preset_generators):
            if gen.oper == _GEN_INSTRUMENT:
                which = gen.amount.word
                if which >= len(hydra.instruments):
                    continue
                regions.extend(_instrument_regions(hydra, which, preset_region, sample_count))
                had_instrument = True
            else:
                preset_region.apply_generator(gen.oper, gen.amount)
        # A leading zone without an instrument is the preset's global zone.
        if bag_index == bags.start and not had_instrument:
            global_region = preset_region
    return regions


def build_presets(hydra: Hydra, sample_count: int) -> list[Preset]:
    """Build presets ordered by bank, then preset number, then file order."""
    headers = hydra.preset_headers[:-1]
    presets = [
        Preset(
            name=header.name[:_NAME_LENGTH],
            preset=header.preset,
            bank=header.bank,
            regions=_preset_regions(hydra, index, sample_count),
        )
        for index, header in enumerate(headers)
    ]
    presets.sort(key=lambda preset: (preset.bank, preset.preset))
    return presets