"""A SoundFont synthesizer: presets, voice allocation, channels and rendering."""

from __future__ import annotations

import enum
import math
import os
from array import array
from dataclasses import dataclass
from typing import MutableSequence, Optional, Sequence

from sfplayer.hydra import read_soundfont
from sfplayer.presets import Preset, build_presets
from sfplayer.region import LoopMode, cents_to_hertz, decibels_to_gain, gain_to_decibels
from sfplayer.voice import Segment, Voice

_SHORT_BUFFER_BLOCK = 512
_DEFAULT_SAMPLE_RATE = 44100.0
_CENTER_WHEEL = 8192


class OutputMode(enum.IntEnum):
    """How rendered channels are laid out in the output buffer."""

    STEREO_INTERLEAVED = 0
    STEREO_UNWEAVED = 1
    MONO = 2


@dataclass
class Channel:
    """Per-channel playback parameters."""

    preset_index: int = 0
    bank: int = 0
    pitch_wheel: int = _CENTER_WHEEL
    midi_pan: int = 8192
    midi_volume: int = 16383
    midi_expression: int = 16383
    midi_rpn: int = 0xFFFF
    midi_data: int = 0
    pan_offset: float = 0.0
    gain_db: float = 0.0
    pitch_range: float = 2.0
    tuning: float = 0.0

    @property
    def pitch_shift(self) -> float:
        """The shift in semitones from the pitch wheel, range and tuning."""
        if self.pitch_wheel == _CENTER_WHEEL:
            return self.tuning
        return (self.pitch_wheel / 16383.0 * self.pitch_range * 2.0) - self.pitch_range + self.tuning


def _set_pan(voice: Voice, pan: float) -> None:
    if pan <= -0.5:
        voice.pan_factor_left, voice.pan_factor_right = 1.0, 0.0
    elif pan >= 0.5:
        voice.pan_factor_left, voice.pan_factor_right = 0.0, 1.0
    else:
        voice.pan_factor_left = math.sqrt(0.5 - pan)
        voice.pan_factor_right = math.sqrt(0.5 + pan)


def _to_short(value: float) -> int:
    if value < -1.00004566:
        return -32768
    if value > 1.00001514:
        return 32767
    return int(value * 32767.5)


class Synthesizer:
    """Plays the presets of a loaded SoundFont into sample buffers."""

    def __init__(self, presets: list[Preset], samples: Sequence[float]) -> None:
        self.presets = presets
        self.samples = samples
        self.voices: list[Voice] = []
        self.max_voice_num = 0
        self.output_mode = OutputMode.STEREO_INTERLEAVED
        self.sample_rate = _DEFAULT_SAMPLE_RATE
        self.global_gain_db = 0.0
        self._voice_play_index = 0
        self._channels: Optional[list[Channel]] = None
        self._active_channel = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> Synthesizer:
        """Load a SoundFont from memory; raises SoundFontError on invalid data."""
        hydra = read_soundfont(data)
        samples = hydra.samples if isinstance(hydra.samples, array) else array("f", hydra.samples)
        return cls(build_presets(hydra, len(samples)), samples)

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> Synthesizer:
        """Load a SoundFont from a file."""
        with open(path, "rb") as handle:
            return cls.from_bytes(handle.read())

    def copy(self) -> Synthesizer:
        """A new instance sharing the loaded SoundFont, with no voices or channels."""
        other = Synthesizer(self.presets, self.samples)
        other.max_voice_num = self.max_voice_num
        other.output_mode = self.output_mode
        other.sample_rate = self.sample_rate
        other.global_gain_db = self.global_gain_db
        other._voice_play_index = self._voice_play_index
        return other

    @property
    def _repeats(self) -> int:
        return 2 if self.max_voice_num else 1

    def reset(self) -> None:
        """Stop all notes quickly and drop all channel settings."""
        for voice in self.voices:
            if voice.playing_preset != -1 and (
                voice.ampenv.segment < Segment.RELEASE or voice.ampenv.parameters.release
            ):
                voice.end_quick(self.sample_rate, self._repeats)
        self._channels = None

    def preset_index(self, bank: int, preset_number: int) -> int:
        """The index of a bank/preset pair, or -1 if the SoundFont has none."""
        for index, preset in enumerate(self.presets):
            if preset.preset == preset_number and preset.bank == bank:
                return index
        return -1

    def preset_count(self) -> int:
        return len(self.presets)

    def preset_name(self, preset_index: int) -> Optional[str]:
        """The name of a preset, or None for an index out of range."""
        if 0 <= preset_index < len(self.presets):
            return self.presets[preset_index].name
        return None

    def bank_preset_name(self, bank: int, preset_number: int) -> Optional[str]:
        return self.preset_name(self.preset_index(bank, preset_number))

    def set_output(self, output_mode: OutputMode, sample_rate: int,
                   global_gain_db: float = 0.0) -> None:
        """Set the output layout, sample rate (44100 if below 1) and gain in dB."""
        self.output_mode = OutputMode(output_mode)
        self.sample_rate = float(sample_rate if sample_rate >= 1 else _DEFAULT_SAMPLE_RATE)
        self.global_gain_db = global_gain_db

    def set_volume(self, global_volume: float) -> None:
        """Set the global gain as a linear factor, 1.0 being unchanged."""
        if global_volume == 1.0:
            self.global_gain_db = 0.0
            return
        inverse = math.inf if global_volume == 0 else 1.0 / global_volume
        self.global_gain_db = -gain_to_decibels(inverse)

    def set_max_voices(self, max_voices: int) -> None:
        """Pre-allocate voices and cap their number; never shrinks."""
        count = max(len(self.voices), max_voices)
        self.voices.extend(Voice() for _ in range(count - len(self.voices)))
        self.max_voice_num = count

    def _find_voice(self, preset_index: int, group: int) -> Optional[Voice]:
        free: Optional[Voice] = None
        if group:
            for voice in self.voices:
                if voice.playing_preset == preset_index and voice.region.group == group:
                    voice.end_quick(self.sample_rate, self._repeats)
                elif voice.playing_preset == -1 and free is None:
                    free = voice
            return free
        return next((voice for voice in self.voices if voice.playing_preset == -1), None)

    def _steal_voice(self) -> Optional[Voice]:
        best: Optional[Voice] = None
        best_done = -999999999
        for voice in self.voices:
            if voice.ampenv.segment == Segment.RELEASE:
                done = (voice.ampenv.release_samples(self.sample_rate)
                        - voice.ampenv.samples_until_next_segment)
                if done > best_done:
                    best_done = done
                    best = voice
        return best

    def note_on(self, preset_index: int, key: int, velocity: float) -> None:
        """Start a note; a velocity of zero or less stops it instead."""
        midi_velocity = int(velocity * 127)
        if preset_index < 0 or preset_index >= len(self.presets):
            return
        if velocity <= 0.0:
            self.note_off(preset_index, key)
            return

        play_index = self._voice_play_index
        self._voice_play_index += 1
        rate = self.sample_rate
        for region in self.presets[preset_index].regions:
            if not (region.lokey <= key <= region.hikey
                    and region.lovel <= midi_velocity <= region.hivel):
                continue
            voice = self._find_voice(preset_index, region.group)
            if voice is None:
                if self.max_voice_num:
                    voice = self._steal_voice()
                    if voice is None:
                        continue
                    voice.kill()
                else:
                    fresh = [Voice() for _ in range(4)]
                    self.voices.extend(fresh)
                    voice = fresh[0]

            voice.region = region
            voice.playing_preset = preset_index
            voice.playing_key = key
            voice.play_index = play_index
            voice.note_gain_db = (self.global_gain_db - region.attenuation
                                  - gain_to_decibels(1.0 / velocity))

            if self._channels is not None:
                self._setup_voice(voice)
            else:
                voice.calc_pitch_ratio(0.0, rate)
                voice.pan_factor_left = math.sqrt(0.5 - region.pan)
                voice.pan_factor_right = math.sqrt(0.5 + region.pan)

            voice.source_sample_position = float(region.offset)
            do_loop = region.loop_mode != LoopMode.NONE and region.loop_start < region.loop_end
            voice.loop_start = region.loop_start if do_loop else 0
            voice.loop_end = region.loop_end if do_loop else 0

            voice.ampenv.setup(region.ampenv, key, midi_velocity, True, rate)
            voice.modenv.setup(region.modenv, key, midi_velocity, False, rate)

            fc = (cents_to_hertz(float(region.initial_filter_fc)) / rate
                  if region.initial_filter_fc <= 13500 else 1.0)
            q_db = region.initial_filter_q / 10.0
            lowpass = voice.lowpass
            lowpass.q_inv = 1.0 / 10.0 ** (q_db / 20.0)
            lowpass.z1 = lowpass.z2 = 0.0
            lowpass.active = fc < 0.499
            if lowpass.active:
                lowpass.setup(fc)

            voice.modlfo.setup(region.delay_mod_lfo, region.freq_mod_lfo, rate)
            voice.viblfo.setup(region.delay_vib_lfo, region.freq_vib_lfo, rate)

    def bank_note_on(self, bank: int, preset_number: int, key: int, velocity: float) -> bool:
        """Start a note by bank and preset number; False if there is no such preset."""
        index = self.preset_index(bank, preset_number)
        if index == -1:
            return False
        self.note_on(index, key, velocity)
        return True

    def _end_earliest(self, matches: list[Voice]) -> None:
        if not matches:
            return
        earliest = min(voice.play_index for voice in matches)
        for voice in matches:
            if voice.play_index == earliest:
                voice.end(self.sample_rate, self._repeats)

    def note_off(self, preset_index: int, key: int) -> None:
        """Release the earliest started note of this preset and key."""
        self._end_earliest([
            voice for voice in self.voices
            if voice.playing_preset == preset_index and voice.playing_key == key
            and voice.ampenv.segment < Segment.RELEASE
        ])

    def bank_note_off(self, bank: int, preset_number: int, key: int) -> bool:
        index = self.preset_index(bank, preset_number)
        if index == -1:
            return False
        self.note_off(index, key)
        return True

    def note_off_all(self) -> None:
        """Release every playing note."""
        for voice in self.voices:
            if voice.playing_preset != -1 and voice.ampenv.segment < Segment.RELEASE:
                voice.end(self.sample_rate, self._repeats)

    def active_voice_count(self) -> int:
        return sum(1 for voice in self.voices if voice.playing_preset != -1)

    def _channel_count(self) -> int:
        return 1 if self.output_mode == OutputMode.MONO else 2

    def render_float(self, samples: int,
                     buffer: Optional[MutableSequence[float]] = None) -> MutableSequence[float]:
        """Render ``samples`` frames; mixes into ``buffer`` when one is given."""
        if samples < 0:
            raise ValueError("sample count must not be negative")
        needed = self._channel_count() * samples
        if buffer is None:
            buffer = [0.0] * needed
        elif len(buffer) < needed:
            raise ValueError(f"buffer holds {len(buffer)} values, {needed} needed")
        mode = int(self.output_mode)
        for voice in self.voices:
            if voice.playing_preset != -1:
                voice.render(self.samples, buffer, samples, mode, self.sample_rate)
        return buffer

    def render_short(self, samples: int,
                     buffer: Optional[MutableSequence[int]] = None) -> MutableSequence[int]:
        """Render ``samples`` frames as 16-bit values; mixes into ``buffer`` when given."""
        if samples < 0:
            raise ValueError("sample count must not be negative")
        channels = self._channel_count()
        needed = channels * samples
        mixing = buffer is not None
        if buffer is None:
            buffer = [0] * needed
        elif len(buffer) < needed:
            raise ValueError(f"buffer holds {len(buffer)} values, {needed} needed")
        block_frames = _SHORT_BUFFER_BLOCK // channels
        position = 0
        remaining = samples
        while remaining > 0:
            frames = min(remaining, block_frames)
            remaining -= frames
            for value in self.render_float(frames):
                converted = _to_short(value)
                if mixing:
                    converted = min(max(buffer[position] + converted, -32768), 32767)
                buffer[position] = converted
                position += 1
        return buffer

    def _setup_voice(self, voice: Voice) -> None:
        channel = self._channels[self._active_channel]
        voice.playing_channel = self._active_channel
        voice.note_gain_db += channel.gain_db
        voice.calc_pitch_ratio(channel.pitch_shift, self.sample_rate)
        _set_pan(voice, voice.region.pan + channel.pan_offset)

    def _channel_init(self, channel: int) -> Channel:
        if channel < 0:
            raise ValueError(f"invalid channel number {channel}")
        if self._channels is None:
            self._channels = []
            self._active_channel = 0
        while len(self._channels) <= channel:
            self._channels.append(Channel())
        return self._channels[channel]

    def _existing_channel(self, channel: int) -> Optional[Channel]:
        if self._channels is not None and 0 <= channel < len(self._channels):
            return self._channels[channel]
        return None

    def _channel_voices(self, channel: int):
        return (voice for voice in self.voices
                if voice.playing_preset != -1 and voice.playing_channel == channel)

    def _apply_pitch(self, channel: int, state: Channel) -> None:
        shift = state.pitch_shift
        for voice in self._channel_voices(channel):
            voice.calc_pitch_ratio(shift, self.sample_rate)

    def channel_set_presetindex(self, channel: int, preset_index: int) -> None:
        self._channel_init(channel).preset_index = preset_index & 0xFFFF

    def channel_set_presetnumber(self, channel: int, preset_number: int,
                                 drums: bool = False) -> bool:
        """Select a preset by number in the channel's bank; False if none is found."""
        state = self._channel_init(channel)
        bank = state.bank & 0x7FFF
        if drums:
            index = self.preset_index(128 | bank, preset_number)
            if index == -1:
                index = self.preset_index(128, preset_number)
            if index == -1:
                index = self.preset_index(128, 0)
            if index == -1:
                index = self.preset_index(bank, preset_number)
        else:
            index = self.preset_index(bank, preset_number)
        if index == -1:
            index = self.preset_index(0, preset_number)
        if index == -1:
            return False
        state.preset_index = index & 0xFFFF
        return True

    def channel_set_bank(self, channel: int, bank: int) -> None:
        self._channel_init(channel).bank = bank & 0xFFFF

    def channel_set_bank_preset(self, channel: int, bank: int, preset_number: int) -> bool:
        """Select bank and preset together; False if the preset does not exist."""
        state = self._channel_init(channel)
        index = self.preset_index(bank, preset_number)
        if index == -1:
            return False
        state.preset_index = index & 0xFFFF
        state.bank = bank & 0xFFFF
        return True

    def channel_set_pan(self, channel: int, pan: float) -> None:
        """Set stereo panning from 0.0 (left) to 1.0 (right)."""
        state = self._channel_init(channel)
        for voice in self._channel_voices(channel):
            _set_pan(voice, voice.region.pan + pan - 0.5)
        state.pan_offset = pan - 0.5

    def channel_set_volume(self, channel: int, volume: float) -> None:
        """Set the channel's linear volume."""
        gain_db = gain_to_decibels(volume)
        state = self._channel_init(channel)
        if gain_db == state.gain_db:
            return
        change = gain_db - state.gain_db
        for voice in self._channel_voices(channel):
            voice.note_gain_db += change
        state.gain_db = gain_db

    def channel_set_pitchwheel(self, channel: int, pitch_wheel: int) -> None:
        state = self._channel_init(channel)
        if state.pitch_wheel == pitch_wheel:
            return
        state.pitch_wheel = pitch_wheel & 0xFFFF
        self._apply_pitch(channel, state)

    def channel_set_pitchrange(self, channel: int, pitch_range: float) -> None:
        state = self._channel_init(channel)
        if state.pitch_range == pitch_range:
            return
        state.pitch_range = pitch_range
        if state.pitch_wheel != _CENTER_WHEEL:
            self._apply_pitch(channel, state)

    def channel_set_tuning(self, channel: int, tuning: float) -> None:
        state = self._channel_init(channel)
        if state.tuning == tuning:
            return
        state.tuning = tuning
        self._apply_pitch(channel, state)

    def channel_note_on(self, channel: int, key: int, velocity: float) -> None:
        """Start a note with the channel's preset; unknown channels are ignored."""
        state = self._existing_channel(channel)
        if state is None:
            return
        self._active_channel = channel
        self.note_on(state.preset_index, key, velocity)

    def channel_note_off(self, channel: int, key: int) -> None:
        self._end_earliest([
            voice for voice in self._channel_voices(channel)
            if voice.playing_key == key and voice.ampenv.segment < Segment.RELEASE
        ])

    def channel_note_off_all(self, channel: int) -> None:
        """Release all notes of a channel."""
        for voice in self._channel_voices(channel):
            if voice.ampenv.segment < Segment.RELEASE:
                voice.end(self.sample_rate, self._repeats)

    def channel_sounds_off_all(self, channel: int) -> None:
        """End all notes of a channel at once, with only a short fade."""
        for voice in self._channel_voices(channel):
            if voice.ampenv.segment < Segment.RELEASE or voice.ampenv.parameters.release:
                voice.end_quick(self.sample_rate, self._repeats)

    def channel_midi_control(self, channel: int, controller: int, control_value: int) -> None:
        """Apply a MIDI control change; unsupported controllers are ignored."""
        state = self._channel_init(channel)
        if controller in (7, 39, 11, 43):
            if controller == 7:
                state.midi_volume = ((state.midi_volume & 0x7F) | (control_value << 7)) & 0xFFFF
            elif controller == 39:
                state.midi_volume = ((state.midi_volume & 0x3F80) | control_value) & 0xFFFF
            elif controller == 11:
                state.midi_expression = ((state.midi_expression & 0x7F)
                                         | (control_value << 7)) & 0xFFFF
            else:
                state.midi_expression = ((state.midi_expression & 0x3F80)
                                         | control_value) & 0xFFFF
            # A cubic curve gives a natural-sounding MIDI volume response.
            level = (state.midi_volume / 16383.0) * (state.midi_expression / 16383.0)
            self.channel_set_volume(channel, level ** 3.0)
        elif controller in (10, 42):
            if controller == 10:
                state.midi_pan = ((state.midi_pan & 0x7F) | (control_value << 7)) & 0xFFFF
            else:
                state.midi_pan = ((state.midi_pan & 0x3F80) | control_value) & 0xFFFF
            self.channel_set_pan(channel, state.midi_pan / 16383.0)
        elif controller in (6, 38):
            if controller == 6:
                state.midi_data = ((state.midi_data & 0x7F) | (control_value << 7)) & 0xFFFF
            else:
                state.midi_data = ((state.midi_data & 0x3F80) | control_value) & 0xFFFF
            if state.midi_rpn == 0:
                self.channel_set_pitchrange(
                    channel, (state.midi_data >> 7) + 0.01 * (state.midi_data & 0x7F))
            elif state.midi_rpn == 1:
                self.channel_set_tuning(
                    channel, int(state.tuning) + (state.midi_data - 8192.0) / 8192.0)
            elif state.midi_rpn == 2 and controller == 6:
                self.channel_set_tuning(
                    channel, (control_value - 64.0) + (state.tuning - int(state.tuning)))
        elif controller == 0:
            # Bank select MSB on its own acts like the LSB.
            state.bank = (0x8000 | control_value) & 0xFFFF
        elif controller == 32:
            high = ((state.bank & 0x7F) << 7) if state.bank & 0x8000 else 0
            state.bank = (high | control_value) & 0xFFFF
        elif controller in (101, 100):
            current = 0 if state.midi_rpn == 0xFFFF else state.midi_rpn
            if controller == 101:
                state.midi_rpn = ((current & 0x7F) | (control_value << 7)) & 0xFFFF
            else:
                state.midi_rpn = ((current & 0x3F80) | control_value) & 0xFFFF
        elif controller in (98, 99):
            state.midi_rpn = 0xFFFF
        elif controller == 120:
            self.channel_sounds_off_all(channel)
        elif controller == 123:
            self.channel_note_off_all(channel)
        elif controller == 121:
            state.midi_volume = state.midi_expression = 16383
            state.midi_pan = 8192
            state.bank = 0
            state.midi_rpn = 0xFFFF
            state.midi_data = 0
            self.channel_set_volume(channel, 1.0)
            self.channel_set_pan(channel, 0.5)
            self.channel_set_pitchrange(channel, 2.0)
            self.channel_set_tuning(channel, 0.0)

    def channel_preset_index(self, channel: int) -> int:
        state = self._existing_channel(channel)
        return state.preset_index if state else 0

    def channel_preset_bank(self, channel: int) -> int:
        state = self._existing_channel(channel)
        return state.bank & 0x7FFF if state else 0

    def channel_preset_number(self, channel: int) -> int:
        state = self._existing_channel(channel)
        return self.presets[state.preset_index].preset if state else 0

    def channel_pan(self, channel: int) -> float:
        state = self._existing_channel(channel)
        return state.pan_offset - 0.5 if state else 0.5

    def channel_volume(self, channel: int) -> float:
        state = self._existing_channel(channel)
        return decibels_to_gain(state.gain_db) if state else 1.0

    def channel_pitchwheel(self, channel: int) -> int:
        state = self._existing_channel(channel)
        return state.pitch_wheel if state else _CENTER_WHEEL

    def channel_pitchrange(self, channel: int) -> float:
        state = self._existing_channel(channel)
        return state.pitch_range if state else 2.0

    def channel_tuning(self, channel: int) -> float:
        state = self._existing_channel(channel)
        return state.tuning if state else 0.0