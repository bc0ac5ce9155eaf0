import math

import pytest

from sfplayer.region import Envelope, LoopMode, Region, timecents_to_seconds
from sfplayer.voice import (
    FAST_RELEASE_TIME,
    Lfo,
    Lowpass,
    Segment,
    Voice,
    VoiceEnvelope,
)

RATE = 100.0
SAMPLES = [0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7]


def make_voice(length=len(SAMPLES), rate=RATE, **region_fields):
    region = Region(sample_rate=int(rate), end=length, pitch_keycenter=60,
                    pitch_keytrack=100, **region_fields)
    voice = Voice(region=region, playing_preset=0, playing_key=60)
    voice.calc_pitch_ratio(0.0, rate)
    voice.ampenv.setup(Envelope(sustain=1.0), 60, 100, True, rate)
    voice.modenv.setup(Envelope(sustain=1.0), 60, 100, False, rate)
    voice.pan_factor_left = voice.pan_factor_right = 1.0
    return voice


def test_envelope_zero_times_go_straight_to_sustain():
    env = VoiceEnvelope()
    env.setup(Envelope(sustain=0.25), 60, 100, True, RATE)
    assert env.segment == Segment.SUSTAIN
    assert env.level == 0.25
    assert env.slope == 0.0
    assert env.samples_until_next_segment == 0x7FFFFFFF


def test_envelope_delay_segment():
    env = VoiceEnvelope()
    env.setup(Envelope(delay=0.5, sustain=1.0), 60, 100, True, RATE)
    assert env.segment == Segment.DELAY
    assert env.samples_until_next_segment == int(0.5 * RATE)
    assert env.level == 0.0


def test_envelope_attack_ramps_to_hold():
    env = VoiceEnvelope()
    env.setup(Envelope(attack=1.0, hold=0.5, sustain=1.0), 60, 100, True, RATE)
    assert env.segment == Segment.ATTACK
    assert env.slope * env.samples_until_next_segment == pytest.approx(1.0)
    env.process(env.samples_until_next_segment, RATE)
    assert env.segment == Segment.HOLD
    assert env.level == 1.0


def test_mod_env_attack_scales_with_velocity():
    amp = VoiceEnvelope()
    amp.setup(Envelope(attack=1.0), 60, 1, True, RATE)
    slow = VoiceEnvelope()
    slow.setup(Envelope(attack=1.0), 60, 1, False, RATE)
    fast = VoiceEnvelope()
    fast.setup(Envelope(attack=1.0), 60, 127, False, RATE)
    assert slow.samples_until_next_segment == amp.samples_until_next_segment
    assert fast.samples_until_next_segment < slow.samples_until_next_segment


def test_amp_decay_is_exponential_down_to_sustain():
    env = VoiceEnvelope()
    env.setup(Envelope(decay=1.0, sustain=0.5), 60, 100, True, 1000.0)
    assert env.segment == Segment.DECAY
    assert env.segment_is_exponential
    assert 0.0 < env.slope < 1.0
    level_after = env.level * env.slope ** env.samples_until_next_segment
    assert level_after == pytest.approx(0.5, abs=1e-2)
    env.process(env.samples_until_next_segment, 1000.0)
    assert env.segment == Segment.SUSTAIN
    assert env.level == 0.5


def test_key_dependent_hold_is_resolved_at_setup():
    env = VoiceEnvelope()
    params = Envelope(hold=0.0, keynum_to_hold=100.0, sustain=1.0)
    env.setup(params, 60, 100, True, 1000.0)
    assert env.parameters.hold == timecents_to_seconds(0.0)
    assert params.hold == 0.0
    assert env.segment == Segment.HOLD


def test_release_samples():
    env = VoiceEnvelope(parameters=Envelope(release=0.0))
    assert env.release_samples(1000.0) == int(FAST_RELEASE_TIME * 1000.0)
    env.parameters.release = 0.5
    assert env.release_samples(1000.0) == int(0.5 * 1000.0)


def test_release_then_done():
    env = VoiceEnvelope()
    env.setup(Envelope(sustain=1.0, release=0.5), 60, 100, True, RATE)
    env.next_segment(Segment.SUSTAIN, RATE)
    assert env.segment == Segment.RELEASE
    assert env.segment_is_exponential
    env.process(env.samples_until_next_segment, RATE)
    assert env.segment == Segment.DONE
    assert env.level == 0.0


def test_lowpass_has_unity_dc_gain():
    lowpass = Lowpass(q_inv=1.0)
    lowpass.setup(0.05)
    out = 0.0
    for _ in range(2000):
        out = lowpass.process(1.0)
    assert out == pytest.approx(1.0, abs=1e-6)


def test_lowpass_attenuates_high_frequency():
    lowpass = Lowpass(q_inv=1.0)
    lowpass.setup(0.05)
    outputs = [lowpass.process(1.0 if i % 2 == 0 else -1.0) for i in range(2000)]
    assert max(abs(value) for value in outputs[-100:]) < 0.1


def test_lfo_waits_for_delay():
    lfo = Lfo()
    lfo.setup(1.0, 0, RATE)
    lfo.process(10)
    assert lfo.level == 0.0
    assert lfo.samples_until == int(RATE) - 10


def test_pitch_ratio_unison_and_octave():
    voice = make_voice()
    assert voice.pitch_input_timecents == 6000.0
    ratio = timecents_to_seconds(voice.pitch_input_timecents) * voice.pitch_output_factor
    assert ratio == pytest.approx(1.0)
    voice.playing_key = 72
    voice.calc_pitch_ratio(0.0, RATE)
    ratio = timecents_to_seconds(voice.pitch_input_timecents) * voice.pitch_output_factor
    assert ratio == pytest.approx(2.0)
    voice.playing_key = 60
    voice.calc_pitch_ratio(12.0, RATE)
    ratio = timecents_to_seconds(voice.pitch_input_timecents) * voice.pitch_output_factor
    assert ratio == pytest.approx(2.0)


def test_render_mono_copies_samples_and_ends_voice():
    voice = make_voice()
    buffer = [0.0] * 10
    voice.render(SAMPLES, buffer, 10, 2, RATE)
    assert buffer[:8] == pytest.approx(SAMPLES)
    assert buffer[8:] == [0.0, 0.0]
    assert voice.playing_preset == -1


def test_render_stereo_interleaved_applies_pan():
    voice = make_voice()
    voice.pan_factor_left = 0.25
    voice.pan_factor_right = 0.75
    buffer = [0.0] * 8
    voice.render(SAMPLES, buffer, 4, 0, RATE)
    assert buffer[0::2] == pytest.approx([s * 0.25 for s in SAMPLES[:4]])
    assert buffer[1::2] == pytest.approx([s * 0.75 for s in SAMPLES[:4]])
    assert voice.playing_preset == 0
    assert voice.source_sample_position == 4.0


def test_render_stereo_unweaved():
    voice = make_voice()
    voice.pan_factor_right = 0.5
    buffer = [0.0] * 8
    voice.render(SAMPLES, buffer, 4, 1, RATE)
    assert buffer[:4] == pytest.approx(SAMPLES[:4])
    assert buffer[4:] == pytest.approx([s * 0.5 for s in SAMPLES[:4]])


def test_render_mixes_into_existing_buffer():
    voice = make_voice()
    buffer = [1.0] * 4
    voice.render(SAMPLES, buffer, 4, 2, RATE)
    assert buffer == pytest.approx([1.0 + s for s in SAMPLES[:4]])


def test_render_continues_across_calls():
    whole = make_voice()
    split = make_voice()
    full = [0.0] * 6
    whole.render(SAMPLES, full, 6, 2, RATE)
    first, second = [0.0] * 3, [0.0] * 3
    split.render(SAMPLES, first, 3, 2, RATE)
    split.render(SAMPLES, second, 3, 2, RATE)
    assert first + second == pytest.approx(full)


def test_render_loops_without_ending():
    voice = make_voice()
    voice.loop_start, voice.loop_end = 2, 5
    buffer = [0.0] * 20
    voice.render(SAMPLES, buffer, 20, 2, RATE)
    assert voice.playing_preset == 0
    assert buffer[6:10] == pytest.approx(buffer[2:6])
    assert buffer[10:14] == pytest.approx(buffer[2:6])
    assert max(buffer) <= max(SAMPLES[:6]) + 1e-9


def test_render_kills_voice_with_finished_envelope():
    voice = make_voice()
    voice.ampenv.next_segment(Segment.RELEASE, RATE)
    assert voice.ampenv.segment == Segment.DONE
    buffer = [0.0] * 4
    voice.render(SAMPLES, buffer, 4, 2, RATE)
    assert voice.playing_preset == -1
    assert buffer == [0.0] * 4


def test_end_stops_sustain_loop():
    voice = make_voice(loop_mode=LoopMode.SUSTAIN)
    voice.loop_start, voice.loop_end = 2, 5
    voice.end(RATE)
    assert voice.ampenv.segment == Segment.RELEASE
    assert voice.modenv.segment == Segment.RELEASE
    assert voice.loop_end == voice.loop_start


def test_end_keeps_continuous_loop():
    voice = make_voice(loop_mode=LoopMode.CONTINUOUS)
    voice.loop_start, voice.loop_end = 2, 5
    voice.end(RATE, 2)
    assert voice.loop_end == 5
    assert voice.ampenv.segment == Segment.RELEASE


def test_end_quick_uses_fast_release():
    voice = make_voice()
    voice.ampenv.parameters.release = 2.0
    voice.end_quick(1000.0)
    assert voice.ampenv.parameters.release == 0.0
    assert voice.ampenv.segment == Segment.RELEASE
    assert voice.ampenv.samples_until_next_segment == int(FAST_RELEASE_TIME * 1000.0)


def test_kill_frees_voice():
    voice = make_voice()
    voice.kill()
    assert voice.playing_preset == -1
    assert not math.isnan(voice.pitch_output_factor)