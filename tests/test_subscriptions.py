"""Tests for listener registration and three-tier dispatch."""
import logging

import pytest

from spiralstate import WILDCARD, ChangeEvent, PathError, StateManager, SubscriptionGraph
from spiralstate.path_store import Commit


def test_exact_listener_receives_new_and_old(state, recorder):
    state.subscribe('audio.isPlaying', recorder)
    state.set('audio.isPlaying', True)
    assert recorder.calls == [(True, False)]


def test_ancestor_listener_fires_for_descendant_write(state, recorder):
    """Subscribing to a section hears writes below it."""
    state.subscribe('audio', recorder)
    state.set('audio.isPlaying', True)
    assert recorder.calls == [(True, False)]


def test_ancestor_listener_ignores_sibling_prefix(state, recorder):
    """'audio' is not an ancestor of 'audioExtra.x'."""
    state.subscribe('audio', recorder)
    state.set('audioExtra.x', 1)
    assert recorder.calls == []


def test_wildcard_receives_change_event(state, recorder):
    state.subscribe('*', recorder)
    state.set('audio.isPlaying', True)
    assert recorder.calls == [(ChangeEvent(path='audio.isPlaying', value=True, old_value=False),)]
    assert recorder.calls[0][0].to_dict() == {'path': 'audio.isPlaying', 'value': True, 'old_value': False}


def test_dispatch_order_is_exact_then_ancestor_then_wildcard(state):
    order = []
    state.subscribe(WILDCARD, lambda event: order.append('wildcard'))
    state.subscribe('visual', lambda new, old: order.append('section'))
    state.subscribe('visual.boost', lambda new, old: order.append('parent'))
    state.subscribe('visual.boost.target', lambda new, old: order.append('exact'))
    state.set('visual.boost.target', 2.0)
    assert order == ['exact', 'parent', 'section', 'wildcard']


def test_unchanged_write_does_not_notify(state, recorder):
    state.subscribe('*', recorder)
    state.subscribe('audio.volume', recorder)
    state.set('audio.volume', 1.0)
    assert recorder.count == 0


def test_immediate_delivers_current_value(state, recorder):
    state.subscribe('audio.volume', recorder, immediate=True)
    assert recorder.calls == [(1.0, 1.0)]


def test_immediate_wildcard_delivers_whole_tree(state, recorder):
    state.subscribe('*', recorder, immediate=True)
    event = recorder.calls[0][0]
    assert event.path == '*'
    assert event.value['audio']['volume'] == 1.0


def test_once_listener_removed_after_first_call(state, recorder):
    state.subscribe('audio.currentTime', recorder, once=True)
    state.set('audio.currentTime', 1)
    state.set('audio.currentTime', 2)
    assert recorder.calls == [(1, 0)]
    assert state.debug()['listeners'] == []


def test_once_with_immediate_counts_the_immediate_call(state, recorder):
    state.subscribe('audio.currentTime', recorder, once=True, immediate=True)
    state.set('audio.currentTime', 5)
    assert recorder.calls == [(0, 0)]


def test_unsubscribe_function_stops_delivery(state, recorder):
    unsubscribe = state.subscribe('audio.isPlaying', recorder)
    unsubscribe()
    unsubscribe()
    state.set('audio.isPlaying', True)
    assert recorder.count == 0


def test_unsubscribe_by_pattern_and_callback(state, recorder):
    state.subscribe('*', recorder)
    assert state.unsubscribe('*', recorder) is True
    assert state.unsubscribe('*', recorder) is False
    state.set('audio.isPlaying', True)
    assert recorder.count == 0


def test_throwing_listener_does_not_block_siblings(state, recorder, caplog):
    """A failing callback is logged and dispatch continues."""
    def broken(new, old):
        raise RuntimeError('boom')

    state.subscribe('audio.isPlaying', broken)
    state.subscribe('audio.isPlaying', recorder)
    state.subscribe('*', recorder)
    with caplog.at_level(logging.WARNING, logger='spiralstate.subscriptions'):
        state.set('audio.isPlaying', True)
    assert recorder.count == 2
    assert 'boom' in caplog.text
    assert state.get('audio.isPlaying') is True


def test_listener_values_are_clones(state):
    """Mutating a delivered value cannot alter the store or other listeners."""
    seen = []

    def mutate(new, old):
        new.append('mutated')

    state.subscribe('ui.items', mutate)
    state.subscribe('ui.items', lambda new, old: seen.append(list(new)))
    state.set('ui.items', ['a'])
    assert seen == [['a']]
    assert state.get('ui.items') == ['a']


def test_mapping_replacement_notifies_changed_descendants(state, recorder):
    """Replacing a section reaches leaf listeners whose value changed."""
    untouched = []
    state.subscribe('audio.isPlaying', recorder)
    state.subscribe('audio.volume', lambda new, old: untouched.append(new))
    audio = state.get('audio')
    audio['isPlaying'] = True
    state.set('audio', audio)
    assert recorder.calls == [(True, False)]
    assert untouched == []


def test_reentrant_idempotent_write_terminates(state, recorder):
    """Writing the same value from a listener is a no-op, so no loop."""
    state.subscribe('audio.isPlaying', lambda new, old: state.set('audio.isPlaying', True))
    state.subscribe('audio.isPlaying', recorder)
    state.set('audio.isPlaying', True)
    assert recorder.calls == [(True, False)]


def test_listener_may_write_other_paths(state):
    state.subscribe('audio.isPlaying', lambda new, old: state.set('interaction.wasPlaying', old))
    state.set('audio.isPlaying', True)
    assert state.get('interaction.wasPlaying') is False
    state.set('audio.isPlaying', False)
    assert state.get('interaction.wasPlaying') is True


def test_subscribe_validates_arguments(state):
    with pytest.raises(TypeError):
        state.subscribe('audio', 'not callable')
    with pytest.raises(PathError):
        state.subscribe('', lambda *a: None)


def test_internal_listeners_run_before_external_ones():
    """Graph-level: internal listeners see every commit first."""
    order = []
    graph = SubscriptionGraph()
    graph.subscribe('a', lambda new, old: order.append('external a'))
    graph.subscribe('b', lambda new, old: order.append('internal b'), internal=True)
    graph.dispatch([Commit('a', 0, 1), Commit('b', 0, 1)])
    assert order == ['internal b', 'external a']


def test_silent_dispatch_skips_external_listeners():
    order = []
    graph = SubscriptionGraph()
    graph.subscribe('a', lambda new, old: order.append('external'))
    graph.subscribe('a', lambda new, old: order.append('internal'), internal=True)
    graph.dispatch([Commit('a', 0, 1)], external=False)
    assert order == ['internal']


def test_debug_reports_listener_counts():
    state = StateManager()
    state.subscribe('audio', lambda *a: None)
    state.subscribe('audio', lambda *a: None)
    state.subscribe('*', lambda *a: None)
    counts = {row['path']: row['count'] for row in state.debug()['listener_counts']}
    assert counts == {'audio': 2, '*': 1}
