"""Playing voices: envelopes, LFOs, the low-pass filter and sample rendering."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field, replace
from typing import MutableSequence, Optional, Sequence

from sfplayer.region import (
    Envelope,
    LoopMode,
    Region,
    cents_to_hertz,
    decibels_to_gain,
    timecents_to_seconds,
)

RENDER_EFFECT_SAMPLE_BLOCK = 64
FAST_RELEASE_TIME = 0.01

_STEREO_INTERLEAVED = 0
_STEREO_UNWEAVED = 1
_MONO = 2

_SUSTAIN_FOREVER = 0x7FFFFFFF
_DONE_SAMPLES = 0x7FFFFFF


def _divide(numerator: float, denominator: float) -> float:
    """Division that follows IEEE rules for a zero denominator."""
    if denominator:
        return numerator / denominator
    if numerator == 0 or math.isnan(numerator):
        return math.nan
    return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


class Segment(enum.IntEnum):
    NONE = 0
    DELAY = 1
    ATTACK = 2
    HOLD = 3
    DECAY = 4
    SUSTAIN = 5
    RELEASE = 6
    DONE = 7


@dataclass
class VoiceEnvelope:
    """The running state of an amplitude or modulation envelope."""

    level: float = 0.0
    slope: float = 0.0
    samples_until_next_segment: int = 0
    segment: Segment = Segment.NONE
    midi_velocity: int = 0
    parameters: Envelope = field(default_factory=Envelope)
    segment_is_exponential: bool = False
    is_amp_env: bool = False

    def release_samples(self, out_sample_rate: float) -> int:
        """Length of the release segment in output samples."""
        release = self.parameters.release
        return int((FAST_RELEASE_TIME if release <= 0 else release) * out_sample_rate)

    def next_segment(self, active_segment: int, out_sample_rate: float) -> None:
        """Leave ``active_segment`` and enter the next segment that has a length."""
        p = self.parameters
        seg = int(active_segment)

        if seg == Segment.NONE:
            self.samples_until_next_segment = int(p.delay * out_sample_rate)
            if self.samples_until_next_segment > 0:
                self.segment = Segment.DELAY
                self.segment_is_exponential = False
                self.level = 0.0
                self.slope = 0.0
                return
            seg = Segment.DELAY

        if seg == Segment.DELAY:
            self.samples_until_next_segment = int(p.attack * out_sample_rate)
            if self.samples_until_next_segment > 0:
                if not self.is_amp_env:
                    # Modulation attack shortens with velocity, down to 1/8 at full velocity.
                    self.samples_until_next_segment = int(
                        p.attack * ((145 - self.midi_velocity) / 144.0) * out_sample_rate
                    )
                self.segment = Segment.ATTACK
                self.segment_is_exponential = False
                self.level = 0.0
                self.slope = _divide(1.0, self.samples_until_next_segment)
                return
            seg = Segment.ATTACK

        if seg == Segment.ATTACK:
            self.samples_until_next_segment = int(p.hold * out_sample_rate)
            if self.samples_until_next_segment > 0:
                self.segment = Segment.HOLD
                self.segment_is_exponential = False
                self.level = 1.0
                self.slope = 0.0
                return
            seg = Segment.HOLD

        if seg == Segment.HOLD:
            self.samples_until_next_segment = int(p.decay * out_sample_rate)
            if self.samples_until_next_segment > 0:
                self.segment = Segment.DECAY
                self.level = 1.0
                if self.is_amp_env:
                    mystery_slope = -9.226 / self.samples_until_next_segment
                    self.slope = math.exp(mystery_slope)
                    self.segment_is_exponential = True
                    if p.sustain > 0.0:
                        # Decay names the time to reach zero, so stop at the sustain level.
                        self.samples_until_next_segment = int(math.log(p.sustain) / mystery_slope)
                else:
                    self.slope = -1.0 / self.samples_until_next_segment
                    self.samples_until_next_segment = int(
                        p.decay * (1.0 - p.sustain) * out_sample_rate
                    )
                    self.segment_is_exponential = False
                return
            seg = Segment.DECAY

        if seg == Segment.DECAY:
            self.segment = Segment.SUSTAIN
            self.level = p.sustain
            self.slope = 0.0
            self.samples_until_next_segment = _SUSTAIN_FOREVER
            self.segment_is_exponential = False
            return

        if seg == Segment.SUSTAIN:
            self.segment = Segment.RELEASE
            self.samples_until_next_segment = self.release_samples(out_sample_rate)
            if self.is_amp_env:
                mystery_slope = _divide(-9.226, self.samples_until_next_segment)
                self.slope = math.exp(mystery_slope)
                self.segment_is_exponential = True
            else:
                self.slope = _divide(-self.level, self.samples_until_next_segment)
                self.segment_is_exponential = False
            return

        self.segment = Segment.DONE
        self.segment_is_exponential = False
        self.level = self.slope = 0.0
        self.samples_until_next_segment = _DONE_SAMPLES

    def setup(self, parameters: Envelope, note: int, velocity: int, is_amp_env: bool,
              out_sample_rate: float) -> None:
        """Start the envelope for a note, resolving key-dependent hold and decay."""
        self.parameters = replace(parameters)
        p = self.parameters
        if p.keynum_to_hold:
            p.hold += p.keynum_to_hold * (60.0 - note)
            p.hold = 0.0 if p.hold < -10000.0 else timecents_to_seconds(p.hold)
        if p.keynum_to_decay:
            p.decay += p.keynum_to_decay * (60.0 - note)
            p.decay = 0.0 if p.decay < -10000.0 else timecents_to_seconds(p.decay)
        self.midi_velocity = velocity
        self.is_amp_env = is_amp_env
        self.next_segment(Segment.NONE, out_sample_rate)

    def process(self, num_samples: int, out_sample_rate: float) -> None:
        """Advance the envelope by ``num_samples`` output samples."""
        if self.slope:
            if self.segment_is_exponential:
                self.level *= self.slope ** float(num_samples)
            else:
                self.level += self.slope * num_samples
        self.samples_until_next_segment -= num_samples
        if self.samples_until_next_segment <= 0:
            self.next_segment(self.segment, out_sample_rate)


@dataclass
class Lowpass:
    """A biquad low-pass filter."""

    q_inv: float = 0.0
    a0: float = 0.0
    a1: float = 0.0
    b1: float = 0.0
    b2: float = 0.0
    z1: float = 0.0
    z2: float = 0.0
    active: bool = False

    def setup(self, fc: float) -> None:
        """Compute coefficients for a cutoff given as a fraction of the sample rate."""
        k = math.tan(math.pi * fc)
        kk = k * k
        norm = 1.0 / (1.0 + k * self.q_inv + kk)
        self.a0 = kk * norm
        self.a1 = 2.0 * self.a0
        self.b1 = 2.0 * (kk - 1.0) * norm
        self.b2 = (1.0 - k * self.q_inv + kk) * norm

    def process(self, value: float) -> float:
        """Filter one sample."""
        out = value * self.a0 + self.z1
        self.z1 = value * self.a1 + self.z2 - self.b1 * out
        self.z2 = value * self.a0 - self.b2 * out
        return out


@dataclass
class Lfo:
    """A triangle low-frequency oscillator ranging over -1..1."""

    samples_until: int = 0
    level: float = 0.0
    delta: float = 0.0

    def setup(self, delay: float, freq_cents: int, out_sample_rate: float) -> None:
        self.samples_until = int(delay * out_sample_rate)
        self.delta = 4.0 * cents_to_hertz(float(freq_cents)) / out_sample_rate
        self.level = 0.0

    def process(self, block_samples: int) -> None:
        """Advance by one block, reflecting at the ends of the range."""
        if self.samples_until > block_samples:
            self.samples_until -= block_samples
            return
        self.level += self.delta * block_samples
        if self.level > 1.0:
            self.delta = -self.delta
            self.level = 2.0 - self.level
        elif self.level < -1.0:
            self.delta = -self.delta
            self.level = -2.0 - self.level


@dataclass
class Voice:
    """One region of a note being played."""

    playing_preset: int = -1
    playing_key: int = 0
    playing_channel: int = -1
    region: Optional[Region] = None
    pitch_input_timecents: float = 0.0
    pitch_output_factor: float = 0.0
    source_sample_position: float = 0.0
    note_gain_db: float = 0.0
    pan_factor_left: float = 0.0
    pan_factor_right: float = 0.0
    play_index: int = 0
    loop_start: int = 0
    loop_end: int = 0
    ampenv: VoiceEnvelope = field(default_factory=VoiceEnvelope)
    modenv: VoiceEnvelope = field(default_factory=VoiceEnvelope)
    lowpass: Lowpass = field(default_factory=Lowpass)
    modlfo: Lfo = field(default_factory=Lfo)
    viblfo: Lfo = field(default_factory=Lfo)

    def kill(self) -> None:
        """Free the voice at once."""
        self.playing_preset = -1

    def end(self, out_sample_rate: float, repeats: int = 1) -> None:
        """Move both envelopes into their release; sustain loops stop looping."""
        for _ in range(repeats):
            self.ampenv.next_segment(Segment.SUSTAIN, out_sample_rate)
            self.modenv.next_segment(Segment.SUSTAIN, out_sample_rate)
            if self.region is not None and self.region.loop_mode == LoopMode.SUSTAIN:
                self.loop_end = self.loop_start

    def end_quick(self, out_sample_rate: float, repeats: int = 1) -> None:
        """Release both envelopes with the short grace release time."""
        for _ in range(repeats):
            self.ampenv.parameters.release = 0.0
            self.ampenv.next_segment(Segment.SUSTAIN, out_sample_rate)
            self.modenv.parameters.release = 0.0
            self.modenv.next_segment(Segment.SUSTAIN, out_sample_rate)

    def calc_pitch_ratio(self, pitch_shift: float, out_sample_rate: float) -> None:
        """Compute the playback pitch from key, region tuning and a shift in semitones."""
        region = self.region
        note = self.playing_key + region.transpose + region.tune / 100.0
        adjusted = region.pitch_keycenter + (note - region.pitch_keycenter) * (
            region.pitch_keytrack / 100.0
        )
        if pitch_shift:
            adjusted += pitch_shift
        self.pitch_input_timecents = adjusted * 100.0
        self.pitch_output_factor = region.sample_rate / (
            timecents_to_seconds(region.pitch_keycenter * 100.0) * out_sample_rate
        )

    def render(self, samples: Sequence[float], buffer: MutableSequence[float], num_samples: int,
               output_mode: int, out_sample_rate: float) -> None:
        """Mix ``num_samples`` output frames of this voice into ``buffer``."""
        region = self.region
        mode = int(output_mode)
        modlfo, viblfo, ampenv, modenv = self.modlfo, self.viblfo, self.ampenv, self.modenv

        update_mod_env = bool(region.mod_env_to_pitch or region.mod_env_to_filter_fc)
        update_mod_lfo = bool(modlfo.delta and (
            region.mod_lfo_to_pitch or region.mod_lfo_to_filter_fc or region.mod_lfo_to_volume
        ))
        update_vib_lfo = bool(viblfo.delta and region.vib_lfo_to_pitch)
        loop_start, loop_end = self.loop_start, self.loop_end
        is_looping = loop_start < loop_end
        sample_end = float(region.end)
        loop_end_position = loop_end + 1.0
        loop_length = loop_end - loop_start + 1.0
        position = self.source_sample_position
        lowpass = replace(self.lowpass)
        sample_count = len(samples)

        dynamic_lowpass = bool(region.mod_lfo_to_filter_fc or region.mod_env_to_filter_fc)
        dynamic_pitch = bool(
            region.mod_lfo_to_pitch or region.mod_env_to_pitch or region.vib_lfo_to_pitch
        )
        dynamic_gain = region.mod_lfo_to_volume != 0

        pitch_ratio = 0.0 if dynamic_pitch else (
            timecents_to_seconds(self.pitch_input_timecents) * self.pitch_output_factor
        )
        note_gain = 0.0 if dynamic_gain else decibels_to_gain(self.note_gain_db)
        mod_lfo_to_volume = region.mod_lfo_to_volume * 0.1

        frame = 0
        remaining = num_samples
        while remaining:
            block = min(remaining, RENDER_EFFECT_SAMPLE_BLOCK)
            remaining -= block

            if dynamic_lowpass:
                fres = (region.initial_filter_fc
                        + modlfo.level * region.mod_lfo_to_filter_fc
                        + modenv.level * region.mod_env_to_filter_fc)
                fc = cents_to_hertz(fres) / out_sample_rate if fres <= 13500 else 1.0
                lowpass.active = fc < 0.499
                if lowpass.active:
                    lowpass.setup(fc)

            if dynamic_pitch:
                pitch_ratio = timecents_to_seconds(
                    self.pitch_input_timecents
                    + modlfo.level * region.mod_lfo_to_pitch
                    + viblfo.level * region.vib_lfo_to_pitch
                    + modenv.level * region.mod_env_to_pitch
                ) * self.pitch_output_factor

            if dynamic_gain:
                note_gain = decibels_to_gain(self.note_gain_db + modlfo.level * mod_lfo_to_volume)

            gain_mono = note_gain * ampenv.level

            ampenv.process(block, out_sample_rate)
            if update_mod_env:
                modenv.process(block, out_sample_rate)
            if update_mod_lfo:
                modlfo.process(block)
            if update_vib_lfo:
                viblfo.process(block)

            gain_left = gain_mono * self.pan_factor_left
            gain_right = gain_mono * self.pan_factor_right

            if mode in (_STEREO_INTERLEAVED, _STEREO_UNWEAVED, _MONO):
                while block and position < sample_end:
                    block -= 1
                    pos = int(position)
                    next_pos = loop_start if (pos >= loop_end and is_looping) else pos + 1
                    alpha = position - pos
                    current = samples[pos] if pos < sample_count else 0.0
                    following = samples[next_pos] if next_pos < sample_count else 0.0
                    value = current * (1.0 - alpha) + following * alpha
                    if lowpass.active:
                        value = lowpass.process(value)

                    if mode == _STEREO_INTERLEAVED:
                        buffer[2 * frame] += value * gain_left
                        buffer[2 * frame + 1] += value * gain_right
                    elif mode == _STEREO_UNWEAVED:
                        buffer[frame] += value * gain_left
                        buffer[num_samples + frame] += value * gain_right
                    else:
                        buffer[frame] += value * gain_mono
                    frame += 1

                    position += pitch_ratio
                    if position >= loop_end_position and is_looping:
                        position -= loop_length

            if position >= sample_end or ampenv.segment == Segment.DONE:
                self.kill()
                return

        self.source_sample_position = position
        if lowpass.active or dynamic_lowpass:
            self.lowpass = lowpass