"""Instrument regions: generator values of a SoundFont zone and their conversions."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from sfplayer.hydra import GenAmount

_UINT_MASK = 0xFFFFFFFF


def timecents_to_seconds(timecents: float) -> float:
    """Convert a time in timecents to seconds."""
    return 2.0 ** (timecents / 1200.0)


def cents_to_hertz(cents: float) -> float:
    """Convert an absolute pitch in cents to a frequency in hertz."""
    return 8.176 * 2.0 ** (cents / 1200.0)


def decibels_to_gain(db: float) -> float:
    """Convert decibels to a linear gain; -100 dB and below is silence."""
    return 10.0 ** (db * 0.05) if db > -100.0 else 0.0


def gain_to_decibels(gain: float) -> float:
    """Convert a linear gain to decibels, with a floor of -100 dB."""
    return -100.0 if gain <= 0.00001 else 20.0 * math.log10(gain)


class LoopMode(enum.IntEnum):
    NONE = 0
    CONTINUOUS = 1
    SUSTAIN = 2


@dataclass
class Envelope:
    """Envelope parameters, in timecents until converted with :meth:`to_seconds`."""

    delay: float = 0.0
    attack: float = 0.0
    hold: float = 0.0
    decay: float = 0.0
    sustain: float = 0.0
    release: float = 0.0
    keynum_to_hold: float = 0.0
    keynum_to_decay: float = 0.0

    def to_seconds(self, sustain_is_gain: bool) -> None:
        """Convert times to seconds and the sustain level to a 0..1 factor, in place."""

        def convert(value: float) -> float:
            return 0.0 if value < -11950.0 else timecents_to_seconds(value)

        self.delay = convert(self.delay)
        self.attack = convert(self.attack)
        self.release = convert(self.release)
        # Key-dependent hold/decay stay in timecents until a note starts.
        if not self.keynum_to_hold:
            self.hold = convert(self.hold)
        if not self.keynum_to_decay:
            self.decay = convert(self.decay)

        if self.sustain < 0.0:
            self.sustain = 0.0
        elif sustain_is_gain:
            self.sustain = decibels_to_gain(-self.sustain / 10.0)
        else:
            self.sustain = 1.0 - self.sustain / 1000.0


class _Kind(enum.Enum):
    FLOAT = enum.auto()
    INT = enum.auto()
    UINT_ADD = enum.auto()
    UINT_ADD15 = enum.auto()
    KEYRANGE = enum.auto()
    VELRANGE = enum.auto()
    LOOPMODE = enum.auto()
    GROUP = enum.auto()
    KEYCENTER = enum.auto()


class _Limit(NamedTuple):
    factor: float
    low: float
    high: float


class _GenMeta(NamedTuple):
    kind: _Kind
    path: tuple[str, ...] = ()
    limit: Optional[_Limit] = None


_L12K = _Limit(1, -12000, 12000)
_LFC = _Limit(1, 1500, 13500)
_LQ = _Limit(1, 0, 960)
_L960 = _Limit(1, -960, 960)
_L16K4500 = _Limit(1, -16000, 4500)
_L12K5K = _Limit(1.0, -12000.0, 5000.0)
_L12K8K = _Limit(1.0, -12000.0, 8000.0)
_L1200 = _Limit(1.0, -1200.0, 1200.0)
_LPAN = _Limit(0.001, -0.5, 0.5)
_LATTN = _Limit(0.1, 0.0, 144.0)
_LMAX1000 = _Limit(1.0, 0.0, 1000.0)
_LMAX1440 = _Limit(1.0, 0.0, 1440.0)

_K = _Kind
_GENERATORS: dict[int, _GenMeta] = {
    0: _GenMeta(_K.UINT_ADD, ("offset",)),
    1: _GenMeta(_K.UINT_ADD, ("end",)),
    2: _GenMeta(_K.UINT_ADD, ("loop_start",)),
    3: _GenMeta(_K.UINT_ADD, ("loop_end",)),
    4: _GenMeta(_K.UINT_ADD15, ("offset",)),
    5: _GenMeta(_K.INT, ("mod_lfo_to_pitch",), _L12K),
    6: _GenMeta(_K.INT, ("vib_lfo_to_pitch",), _L12K),
    7: _GenMeta(_K.INT, ("mod_env_to_pitch",), _L12K),
    8: _GenMeta(_K.INT, ("initial_filter_fc",), _LFC),
    9: _GenMeta(_K.INT, ("initial_filter_q",), _LQ),
    10: _GenMeta(_K.INT, ("mod_lfo_to_filter_fc",), _L12K),
    11: _GenMeta(_K.INT, ("mod_env_to_filter_fc",), _L12K),
    12: _GenMeta(_K.UINT_ADD15, ("end",)),
    13: _GenMeta(_K.INT, ("mod_lfo_to_volume",), _L960),
    17: _GenMeta(_K.FLOAT, ("pan",), _LPAN),
    21: _GenMeta(_K.FLOAT, ("delay_mod_lfo",), _L12K5K),
    22: _GenMeta(_K.INT, ("freq_mod_lfo",), _L16K4500),
    23: _GenMeta(_K.FLOAT, ("delay_vib_lfo",), _L12K5K),
    24: _GenMeta(_K.INT, ("freq_vib_lfo",), _L16K4500),
    25: _GenMeta(_K.FLOAT, ("modenv", "delay"), _L12K5K),
    26: _GenMeta(_K.FLOAT, ("modenv", "attack"), _L12K8K),
    27: _GenMeta(_K.FLOAT, ("modenv", "hold"), _L12K5K),
    28: _GenMeta(_K.FLOAT, ("modenv", "decay"), _L12K8K),
    29: _GenMeta(_K.FLOAT, ("modenv", "sustain"), _LMAX1000),
    30: _GenMeta(_K.FLOAT, ("modenv", "release"), _L12K8K),
    31: _GenMeta(_K.FLOAT, ("modenv", "keynum_to_hold"), _L1200),
    32: _GenMeta(_K.FLOAT, ("modenv", "keynum_to_decay"), _L1200),
    33: _GenMeta(_K.FLOAT, ("ampenv", "delay"), _L12K5K),
    34: _GenMeta(_K.FLOAT, ("ampenv", "attack"), _L12K8K),
    35: _GenMeta(_K.FLOAT, ("ampenv", "hold"), _L12K5K),
    36: _GenMeta(_K.FLOAT, ("ampenv", "decay"), _L12K8K),
    37: _GenMeta(_K.FLOAT, ("ampenv", "sustain"), _LMAX1440),
    38: _GenMeta(_K.FLOAT, ("ampenv", "release"), _L12K8K),
    39: _GenMeta(_K.FLOAT, ("ampenv", "keynum_to_hold"), _L1200),
    40: _GenMeta(_K.FLOAT, ("ampenv", "keynum_to_decay"), _L1200),
    43: _GenMeta(_K.KEYRANGE),
    44: _GenMeta(_K.VELRANGE),
    45: _GenMeta(_K.UINT_ADD15, ("loop_start",)),
    48: _GenMeta(_K.FLOAT, ("attenuation",), _LATTN),
    50: _GenMeta(_K.UINT_ADD15, ("loop_end",)),
    51: _GenMeta(_K.INT, ("transpose",)),
    52: _GenMeta(_K.INT, ("tune",)),
    54: _GenMeta(_K.LOOPMODE),
    56: _GenMeta(_K.INT, ("pitch_keytrack",)),
    57: _GenMeta(_K.GROUP),
    58: _GenMeta(_K.KEYCENTER),
}
_GEN_MAX = 59


@dataclass
class Region:
    """A key/velocity zone with the sample window and articulation it plays with."""

    loop_mode: LoopMode = LoopMode.NONE
    sample_rate: int = 0
    lokey: int = 0
    hikey: int = 0
    lovel: int = 0
    hivel: int = 0
    group: int = 0
    offset: int = 0
    end: int = 0
    loop_start: int = 0
    loop_end: int = 0
    transpose: int = 0
    tune: int = 0
    pitch_keycenter: int = 0
    pitch_keytrack: int = 0
    attenuation: float = 0.0
    pan: float = 0.0
    ampenv: Envelope = field(default_factory=Envelope)
    modenv: Envelope = field(default_factory=Envelope)
    initial_filter_q: int = 0
    initial_filter_fc: int = 0
    mod_env_to_pitch: int = 0
    mod_env_to_filter_fc: int = 0
    mod_lfo_to_filter_fc: int = 0
    mod_lfo_to_volume: int = 0
    delay_mod_lfo: float = 0.0
    freq_mod_lfo: int = 0
    mod_lfo_to_pitch: int = 0
    delay_vib_lfo: float = 0.0
    freq_vib_lfo: int = 0
    vib_lfo_to_pitch: int = 0

    @classmethod
    def cleared(cls, for_relative: bool) -> Region:
        """A region with defaults; relative regions (preset level) start at zero."""
        region = cls(hikey=127, hivel=127, pitch_keycenter=60)
        if for_relative:
            return region
        region.pitch_keytrack = 100
        region.pitch_keycenter = -1
        for env in (region.ampenv, region.modenv):
            env.delay = env.attack = env.hold = env.decay = env.release = -12000.0
        region.initial_filter_fc = 13500
        region.delay_mod_lfo = -12000.0
        region.delay_vib_lfo = -12000.0
        return region

    def _get(self, path: tuple[str, ...]):
        target = self
        for name in path[:-1]:
            target = getattr(target, name)
        return getattr(target, path[-1])

    def _set(self, path: tuple[str, ...], value) -> None:
        target = self
        for name in path[:-1]:
            target = getattr(target, name)
        setattr(target, path[-1], value)

    def apply_generator(self, gen_oper: int, amount: GenAmount) -> None:
        """Apply one generator to this region; unknown operators are ignored."""
        if gen_oper >= _GEN_MAX:
            return
        meta = _GENERATORS.get(gen_oper)
        if meta is None:
            return
        kind = meta.kind
        if kind is _Kind.FLOAT:
            self._set(meta.path, float(amount.short))
        elif kind is _Kind.INT:
            self._set(meta.path, amount.short)
        elif kind is _Kind.UINT_ADD:
            self._set(meta.path, (self._get(meta.path) + amount.short) & _UINT_MASK)
        elif kind is _Kind.UINT_ADD15:
            self._set(meta.path, (self._get(meta.path) + (amount.short << 15)) & _UINT_MASK)
        elif kind is _Kind.KEYRANGE:
            self.lokey, self.hikey = amount.lo, amount.hi
        elif kind is _Kind.VELRANGE:
            self.lovel, self.hivel = amount.lo, amount.hi
        elif kind is _Kind.LOOPMODE:
            bits = amount.word & 3
            if bits == 3:
                self.loop_mode = LoopMode.SUSTAIN
            elif bits == 1:
                self.loop_mode = LoopMode.CONTINUOUS
            else:
                self.loop_mode = LoopMode.NONE
        elif kind is _Kind.GROUP:
            self.group = amount.word
        elif kind is _Kind.KEYCENTER:
            self.pitch_keycenter = amount.short

    def merge(self, other: Region) -> None:
        """Add the additive values of ``other`` into this region, then scale and clamp."""
        for meta in _GENERATORS.values():
            kind = meta.kind
            if kind is _Kind.FLOAT:
                value = self._get(meta.path) + other._get(meta.path)
                if meta.limit is not None:
                    value *= meta.limit.factor
                    value = min(max(value, meta.limit.low), meta.limit.high)
                self._set(meta.path, value)
            elif kind is _Kind.INT:
                value = self._get(meta.path) + other._get(meta.path)
                if meta.limit is not None:
                    value = int(min(max(value, meta.limit.low), meta.limit.high))
                self._set(meta.path, value)
            elif kind is _Kind.UINT_ADD:
                value = (self._get(meta.path) + other._get(meta.path)) & _UINT_MASK
                self._set(meta.path, value)