"""
Tests for ParamDriftEngine

Validates both drift strategies, range clamping over long runs, waveform
corruption cadence and start/stop behaviour.
"""

import math

import numpy as np
import pytest

from wavejam.drift import (
    OSCILLATOR,
    RANDOM_WALK,
    DriftSettings,
    ParamDriftEngine,
    eligible_params,
)
from wavejam.state import PARAM_SPECS, WAVE_SIZE, SharedState


@pytest.fixture
def state():
    return SharedState()


def make_engine(state, relay, clock, seed=0, **settings):
    return ParamDriftEngine(state, relay, clock, DriftSettings(**settings),
                            np.random.default_rng(seed))


def assert_params_in_range(params):
    for key, value in params.items():
        spec = PARAM_SPECS[key]
        assert spec.low <= value <= spec.high, f"{key}={value}"
        if spec.integer:
            assert isinstance(value, int)


class TestEligibility:

    def test_expensive_params_excluded(self):
        eligible = eligible_params()
        assert 'UNISON_VOICES' not in eligible
        assert 'UNISON_SPREAD' in eligible
        assert 'FILTER_CUTOFF' in eligible

    def test_settings_validation(self):
        with pytest.raises(ValueError, match="Unknown drift strategy"):
            DriftSettings(strategy="brownian").validate()
        with pytest.raises(ValueError):
            DriftSettings(interval=0).validate()
        with pytest.raises(ValueError):
            DriftSettings(oscillator_param='UNISON_VOICES').validate()
        with pytest.raises(ValueError):
            DriftSettings(corrupt_probability=1.5).validate()


class TestClamping:
    """10,000 ticks never leave a param outside its range."""

    @pytest.mark.parametrize("strategy", [RANDOM_WALK, OSCILLATOR])
    def test_long_run_stays_in_range(self, state, relay, clock, strategy):
        engine = make_engine(state, relay, clock, seed=11, strategy=strategy,
                             warp_probability=0.3, drift_step=0.2)
        voices = state.params['UNISON_VOICES']

        for _ in range(10000):
            engine.tick()
            assert_params_in_range(state.params)

        assert state.params['UNISON_VOICES'] == voices
        waveform = state.value('waveform')
        assert len(waveform) == WAVE_SIZE
        assert all(-1.0 <= s <= 1.0 for s in waveform)

    def test_random_walk_moves_params(self, state, relay, clock):
        engine = make_engine(state, relay, clock, seed=5)
        before = state.params
        for _ in range(20):
            engine.tick()
        changed = [k for k in before if state.params[k] != before[k]]
        assert changed
        assert 'UNISON_VOICES' not in changed


class TestOscillator:

    def test_designated_param_follows_sine(self, state, relay, clock):
        engine = make_engine(state, relay, clock, strategy=OSCILLATOR,
                             oscillator_noise=0.0, phase_step=0.1)
        for tick in range(1, 40):
            engine.tick()
            expected = 0.5 + 0.5 * math.sin(0.1 * tick)
            assert state.params['FILTER_CUTOFF'] == pytest.approx(expected)

    def test_second_param_also_moves(self, state, relay, clock):
        engine = make_engine(state, relay, clock, seed=9, strategy=OSCILLATOR)
        before = state.params
        for _ in range(10):
            engine.tick()
        others = [k for k in before if k != 'FILTER_CUTOFF' and state.params[k] != before[k]]
        assert others


class TestBroadcastAndCorruption:

    def test_tick_broadcasts_params_globally(self, state, relay, clock, connect):
        _, inbox_a = connect()
        _, inbox_b = connect()
        engine = make_engine(state, relay, clock, corrupt_probability=0.0)

        params = engine.tick()

        assert inbox_a.types() == ['sync_params']
        assert inbox_b.types() == ['sync_params']
        assert inbox_a[0]['data'] == params == state.params
        assert inbox_a[0]['originator'] is None

    def test_corruption_cadence(self, state, relay, clock, connect):
        _, inbox = connect()
        engine = make_engine(state, relay, clock, corrupt_every=4, corrupt_probability=1.0)

        for _ in range(12):
            engine.tick()

        # Ticks 4, 8 and 12
        assert len(inbox.of('sync_waveform')) == 3
        assert len(inbox.of('sync_params')) == 12
        assert inbox.of('sync_waveform')[-1]['data'] == state.value('waveform')

    def test_no_corruption_when_probability_zero(self, state, relay, clock, connect):
        _, inbox = connect()
        engine = make_engine(state, relay, clock, corrupt_probability=0.0)
        before = state.value('waveform')
        for _ in range(40):
            engine.tick()
        assert inbox.of('sync_waveform') == []
        assert state.value('waveform') == before

    def test_corrupt_waveform_noise_magnitude(self, state, relay, clock):
        engine = make_engine(state, relay, clock, seed=2)
        flat = [0.0] * WAVE_SIZE
        state.replace_field('waveform', flat)

        corrupted = np.asarray(engine.corrupt_waveform())

        assert np.all(np.abs(corrupted) <= 0.25)
        assert np.any(corrupted != 0.0)
        small = np.abs(corrupted) <= 0.025
        assert small.sum() > WAVE_SIZE * 0.6


class TestStartStop:

    def test_start_ticks_periodically(self, state, relay, clock):
        engine = make_engine(state, relay, clock, interval=0.5)
        state.replace_field('autoDrift', {'active': True})

        engine.configure()
        clock.advance(5.0)

        assert engine.tick_count == 10
        assert engine.running
        assert clock.max_outstanding == 1

    def test_stop_prevents_further_ticks(self, state, relay, clock):
        engine = make_engine(state, relay, clock, interval=0.5)
        state.replace_field('autoDrift', {'active': True})
        engine.configure()
        clock.advance(1.0)

        state.replace_field('autoDrift', {'active': False})
        engine.configure()
        ticks = engine.tick_count
        clock.advance(10.0)

        assert engine.tick_count == ticks
        assert not engine.running
        assert clock.outstanding() == []

    def test_restart_resets_phase_and_counter(self, state, relay, clock):
        engine = make_engine(state, relay, clock, strategy=OSCILLATOR, interval=0.5)
        state.replace_field('autoDrift', {'active': True})
        engine.configure()
        clock.advance(2.0)
        assert engine.phase > 0

        engine.configure()

        assert engine.phase == 0.0
        assert engine.tick_count == 0
        assert len(clock.outstanding()) == 1
