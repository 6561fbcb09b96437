"""
Tests for BroadcastRelay

Validates peer-sync exclusion, global fan-out, ordering and the OSC mirror hook.
"""

from unittest.mock import Mock

from wavejam.relay import AUTO_ORIGINATOR, BroadcastRelay, make_message


class TestPeerSync:
    """Test peer-sync delivers to everyone but the author."""

    def test_origin_excluded(self, relay, connect):
        a, inbox_a = connect()
        b, inbox_b = connect()
        c, inbox_c = connect()

        delivered = relay.peers(a.session_id, 'sync_adsr', {'attack': 0.5})

        assert delivered == 2
        assert inbox_a == []
        assert inbox_b == [make_message('sync_adsr', {'attack': 0.5}, a.session_id)]
        assert inbox_c == inbox_b

    def test_originator_tag(self, relay, connect):
        a, _ = connect("author")
        _, inbox_b = connect()

        relay.peers(a.session_id, 'sync_mixer', {'synth': 0})

        assert inbox_b[0]['originator'] == "author"

    def test_alone_delivers_nothing(self, relay, connect):
        a, inbox_a = connect()
        assert relay.peers(a.session_id, 'sync_eq', {}) == 0
        assert inbox_a == []

    def test_order_preserved(self, relay, connect):
        a, _ = connect()
        _, inbox_b = connect()

        for i in range(50):
            relay.peers(a.session_id, 'sync_param', {'key': 'LFO_RATE', 'value': i / 50})

        assert [m['data']['value'] for m in inbox_b] == [i / 50 for i in range(50)]


class TestGlobalFanOut:
    """Test global fan-out includes the author."""

    def test_everyone_receives(self, relay, connect):
        a, inbox_a = connect()
        _, inbox_b = connect()

        delivered = relay.everyone('sync_scale', 'MAJOR', a.session_id)

        assert delivered == 2
        assert inbox_a == inbox_b == [make_message('sync_scale', 'MAJOR', a.session_id)]

    def test_server_event_has_no_originator(self, relay, connect):
        _, inbox = connect()
        relay.everyone('sync_params', {'LFO_RATE': 0.3})
        assert inbox[0]['originator'] is None

    def test_closed_session_skipped(self, relay, registry, connect):
        a, inbox_a = connect()
        _, inbox_b = connect()
        a.close()

        assert relay.everyone('users', {}) == 1
        assert inbox_a == []
        assert len(inbox_b) == 1

    def test_delivery_counter(self, relay, connect):
        connect()
        connect()
        relay.everyone('users', {})
        relay.everyone('users', {})
        assert relay.stats.get('deliveries') == 4


class TestNoteMirror:
    """Test trigger_note events are mirrored, other events are not."""

    def test_notes_mirrored(self, registry, connect):
        mirror = Mock()
        relay = BroadcastRelay(registry, note_mirror=mirror)
        connect()

        note = {'pitch': 'C4', 'duration': 0.5, 'normX': 0.1, 'normY': 0.2}
        relay.everyone('trigger_note', note, AUTO_ORIGINATOR)
        relay.everyone('sync_scale', 'MAJOR')

        mirror.send_note.assert_called_once_with(dict(note, originator=AUTO_ORIGINATOR))

    def test_mirror_runs_with_no_sessions(self, registry):
        mirror = Mock()
        relay = BroadcastRelay(registry, note_mirror=mirror)
        relay.everyone('trigger_note', {'pitch': 'C4', 'duration': 0.5})
        mirror.send_note.assert_called_once()

    def test_send_to_single_session(self, relay, connect):
        a, inbox_a = connect()
        _, inbox_b = connect()

        assert relay.send_to(a, 'init', {'sessionId': a.session_id})
        assert inbox_a.types() == ['init']
        assert inbox_b == []
