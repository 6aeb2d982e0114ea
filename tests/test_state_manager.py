"""End-to-end tests for the StateManager facade."""
import pytest

from spiralstate import (
    ABSENT,
    DEFAULT_STATE,
    SECTIONS,
    ChangeEvent,
    PathError,
    StateError,
    StateManager,
    ValidationError,
)


# ========== CONSTRUCTION ==========

def test_defaults_loaded(state):
    assert state.get() == DEFAULT_STATE
    assert tuple(state.get()) == SECTIONS
    assert state.get('settings.targetFPS') == 60


def test_initial_state_is_merged_over_defaults():
    state = StateManager(initial_state={'audio': {'volume': 0.5}, 'extra': {'flag': True}})
    assert state.get('audio.volume') == 0.5
    assert state.get('audio.isPlaying') is False
    assert state.get('extra.flag') is True
    assert len(state.get_history()) == 1


def test_custom_defaults_replace_builtin_tree():
    state = StateManager(defaults={'counter': {'value': 0}})
    assert state.get() == {'counter': {'value': 0}}
    state.set('counter.value', 3)
    state.reset()
    assert state.get('counter.value') == 0


def test_defaults_are_not_shared_between_instances():
    first = StateManager()
    second = StateManager()
    first.set('ui.tooltip.text', 'first only')
    assert second.get('ui.tooltip.text') == ''
    assert DEFAULT_STATE['ui']['tooltip']['text'] == ''


# ========== READ / WRITE ==========

def test_set_then_get(state):
    state.set('audio.currentTime', 12.5)
    assert state.get('audio.currentTime') == 12.5


def test_missing_path_reads_absent(state):
    assert state.get('audio.nothingHere') is ABSENT
    assert state.get('nowhere.at.all') is ABSENT
    assert state.get('audio.volume.deeper') is ABSENT
    assert not state.has('audio.nothingHere')
    assert state.has('audio.volume')


def test_returned_values_are_detached(state):
    tooltip = state.get('ui.tooltip')
    tooltip['text'] = 'changed behind the store'
    whole = state.get()
    whole['audio']['volume'] = 0
    assert state.get('ui.tooltip.text') == ''
    assert state.get('audio.volume') == 1.0


def test_written_values_are_detached(state):
    items = ['a', 'b']
    state.set('ui.items', items)
    items.append('c')
    assert state.get('ui.items') == ['a', 'b']


def test_set_creates_intermediate_mappings(state):
    state.set('plugins.eq.bands', [60, 250, 1000])
    assert state.get('plugins') == {'eq': {'bands': [60, 250, 1000]}}


def test_opaque_objects_are_kept_by_reference(state):
    class DecodedBuffer:
        pass

    buffer = DecodedBuffer()
    state.set('audio.buffer', buffer)
    assert state.get('audio.buffer') is buffer


@pytest.mark.parametrize('path', ['', 'audio..volume', '.audio', 'audio.', 42])
def test_malformed_paths_raise(state, path):
    with pytest.raises(PathError):
        state.set(path, 1)


def test_write_through_non_mapping_raises(state):
    with pytest.raises(PathError):
        state.set('audio.volume.left', 0.5)
    assert state.get('audio.volume') == 1.0


def test_batch_requires_mapping(state):
    with pytest.raises(TypeError):
        state.batch([('audio.volume', 0.5)])


def test_batch_with_malformed_path_changes_nothing(state):
    with pytest.raises(PathError):
        state.batch({'audio.isPlaying': True, 'audio..volume': 0.5})
    assert state.get('audio.isPlaying') is False


# ========== RESET ==========

def test_reset_section(state):
    state.set('ui.tooltip.text', 'hello')
    state.set('audio.volume', 0.5)
    state.reset('ui')
    assert state.get('ui') == DEFAULT_STATE['ui']
    assert state.get('audio.volume') == 0.5


def test_reset_unknown_section_raises(state):
    with pytest.raises(PathError):
        state.reset('nope')


def test_full_reset_notifies_listeners(state, recorder):
    state.set('audio.volume', 0.5)
    state.subscribe('audio.volume', recorder)
    state.reset()
    assert recorder.calls == [(1.0, 0.5)]


def test_full_reset_refused_inside_batch(state):
    with pytest.raises(StateError):
        with state.batching():
            state.reset()


# ========== EXPORT / DEBUG ==========

def test_export_includes_version_and_timestamp(state):
    state.set('audio.volume', 0.5)
    exported = state.export()
    assert exported['state']['audio']['volume'] == 0.5
    assert exported['version'] == state.config.schema_version
    assert isinstance(exported['timestamp'], float)


def test_debug_describes_store(state):
    state.subscribe('audio', lambda new, old: None)
    state.compute('audio.percentage', ['audio.currentTime', 'audio.duration'], lambda t, d: 0)
    state.validate('settings.lastUrl', lambda url: None)
    info = state.debug()
    assert set(info) == {'state', 'listeners', 'listener_counts', 'computed', 'computed_details',
                         'validators', 'history'}
    assert 'audio' in info['listeners']
    assert info['computed'] == ['audio.percentage']
    assert 'settings.lastUrl' in info['validators']
    assert 'audio.playhead' in info['validators']
    assert info['history']['length'] == 1
    assert info['history']['can_undo'] is False


# ========== PLAYER SCENARIO ==========

def test_playback_session(state, recorder):
    """A load, play and seek sequence as the audio engine would drive it."""
    section_calls = []
    state.subscribe('audio', lambda new, old: section_calls.append(new))
    state.subscribe('*', recorder)
    state.compute(
        'audio.percentage',
        ['audio.currentTime', 'audio.duration'],
        lambda t, d: t / d * 100 if d > 0 else 0,
    )

    state.batch({'audio.duration': 100, 'audio.currentTime': 30}, label='load track')
    assert state.get('audio.percentage') == 30

    state.set('audio.isPlaying', True)
    assert recorder.calls[-1] == (ChangeEvent(path='audio.isPlaying', value=True, old_value=False),)

    before = recorder.count
    state.set('audio.isPlaying', True)
    assert recorder.count == before

    state.set('audio.duration', 50)
    assert state.get('audio.percentage') == 60

    with pytest.raises(ValidationError):
        state.set('audio.playhead', 1.5)

    assert [row['label'] for row in state.get_history()] == [
        'init', 'load track', 'set audio.isPlaying', 'set audio.duration',
    ]
    assert section_calls == [100, 30, True, 50]

    state.undo()
    state.undo()
    assert state.get('audio.isPlaying') is False
    assert state.get('audio.percentage') == 30
    state.redo()
    assert state.get('audio.isPlaying') is True
