"""
Tests for OneShotTimer

Validates cancel-before-rearm and that cancelled fires never run.
"""

from wavejam.timers import OneShotTimer


class TestOneShotTimer:

    def test_fires_once(self, clock):
        fired = []
        timer = OneShotTimer(clock)

        timer.arm(1.0, lambda: fired.append(clock.now))
        assert timer.pending

        clock.advance(5.0)
        assert fired == [1.0]
        assert not timer.pending

    def test_rearm_cancels_previous(self, clock):
        fired = []
        timer = OneShotTimer(clock)

        timer.arm(1.0, lambda: fired.append('first'))
        timer.arm(2.0, lambda: fired.append('second'))

        assert len(clock.outstanding()) == 1
        clock.advance(5.0)
        assert fired == ['second']

    def test_cancel_is_total(self, clock):
        fired = []
        timer = OneShotTimer(clock)

        timer.arm(1.0, lambda: fired.append(1))
        timer.cancel()
        timer.cancel()

        clock.advance(5.0)
        assert fired == []
        assert not timer.pending

    def test_stale_handle_stays_silent(self, clock):
        """A handle the clock already dequeued must not fire after cancel."""
        fired = []
        timer = OneShotTimer(clock)
        timer.arm(1.0, lambda: fired.append(1))
        stale = clock.handles[-1]

        timer.cancel()
        stale.callback()

        assert fired == []

    def test_callback_can_rearm(self, clock):
        fired = []
        timer = OneShotTimer(clock)

        def tick():
            fired.append(clock.now)
            if len(fired) < 3:
                timer.arm(1.0, tick)

        timer.arm(1.0, tick)
        clock.advance(10.0)

        assert fired == [1.0, 2.0, 3.0]
        assert clock.max_outstanding == 1
