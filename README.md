# sfplayer

A SoundFont 2 (`.sf2`) sample-based synthesizer in pure Python. It reads a
SoundFont, builds its presets and regions, and renders notes into sample
buffers with envelopes, LFOs, a low-pass filter and MIDI-style channel
controls. It has no dependencies outside the standard library.

## Installation

    pip install sfplayer

## Loading a SoundFont

```python
from sfplayer.resources import SoundFont
from sfplayer.synth import Synthesizer, OutputMode

font = SoundFont.from_file("piano.sf2")   # raw bytes in font.data
synth = Synthesizer.from_bytes(font.data)
# or: synth = Synthesizer.from_file("piano.sf2")

print(synth.preset_count())
print(synth.preset_name(0))          # None for an index out of range
print(synth.preset_index(0, 0))      # bank 0, preset 0; -1 if absent
```

Bytes that are not a usable SoundFont raise `sfplayer.hydra.SoundFontError`
(a `ValueError`).

## Playing notes

```python
synth.set_output(OutputMode.STEREO_INTERLEAVED, 44100, -6.0)
synth.set_max_voices(64)

synth.note_on(0, 60, 1.0)             # preset index 0, middle C, full velocity
frames = synth.render_float(44100)    # one second: a flat list of floats, L R L R ...
synth.note_off(0, 60)
print(synth.active_voice_count())
```

- `OutputMode.STEREO_INTERLEAVED` puts left and right values one after the
  other; `STEREO_UNWEAVED` puts all left values first, then all right;
  `MONO` gives one value per frame.
- `render_float(samples, buffer)` and `render_short(samples, buffer)` mix into
  an existing buffer when one is given and return it; without one they return
  a new list. `render_short` gives 16-bit integer values, clipped.
- `bank_note_on` / `bank_note_off` address a preset by bank and preset number
  and return `False` if there is no such preset.
- `set_volume` sets the global gain as a linear factor; `reset` stops all
  notes quickly and drops channel settings; `copy` gives an independent
  synthesizer sharing the same loaded SoundFont.

## Channels

Channel-based control follows MIDI conventions:

```python
synth.channel_set_presetnumber(0, 0, False)   # False if no preset matches
synth.channel_set_pitchwheel(0, 8192)         # centred (0..16383)
synth.channel_set_pan(0, 0.5)                 # 0.0 left .. 1.0 right
synth.channel_midi_control(0, 7, 100)         # controller 7: channel volume
synth.channel_note_on(0, 64, 0.8)
synth.channel_note_off(0, 64)
```

`channel_midi_control` handles volume, expression, pan, bank select, RPN
pitch-bend range and fine/coarse tuning, data entry, all sounds off, all notes
off and reset all controllers; other controllers are ignored. The current
values can be read back with `channel_preset_index`, `channel_preset_bank`,
`channel_preset_number`, `channel_pan`, `channel_volume`,
`channel_pitchwheel`, `channel_pitchrange` and `channel_tuning`.

## Lower-level pieces

- `sfplayer.hydra.read_soundfont(data)` parses the RIFF tables and returns a
  `Hydra` with preset, instrument and sample headers and the samples as
  floats.
- `sfplayer.presets.build_presets(hydra, sample_count)` turns those tables
  into `Preset` objects holding `Region`s, ordered by bank and preset number.
- `sfplayer.region` holds the `Region` and `Envelope` types and the unit
  conversions `timecents_to_seconds`, `cents_to_hertz`, `decibels_to_gain`
  and `gain_to_decibels`.
- `sfplayer.voice` holds the per-voice state: `VoiceEnvelope`, `Lfo`,
  `Lowpass` and `Voice`.

## What it does not do

- It does not play sound on an audio device; it only fills buffers.
- It does not read MIDI files and has no scheduler for timed events; notes
  and controls take effect when the methods are called.
- Vorbis-compressed samples (`.sf3`, `.sfo`) are not supported and raise
  `SoundFontError`.
- SoundFont modulators and the chorus and reverb sends are ignored.

## Running the tests

    pip install -e .[test]
    pytest