"""Default state tree for the spiral waveform player."""
from typing import Any, Dict

DEFAULT_STATE: Dict[str, Any] = {
    'audio': {
        'buffer': None,
        'waveform': None,
        'maxAmplitude': 1,
        'playhead': 0,
        'currentTime': 0,
        'duration': 0,
        'isPlaying': False,
        'volume': 1.0,
        'isLoading': False,
        'loadingProgress': 0,
        'error': None,
    },

    'visual': {
        'isTransitioning': False,
        'transitionStartTime': 0,
        'animationProgress': 0,
        'lastStateChange': 0,
        'playheadAnimation': {
            'progress': 0,
            'startTime': 0,
            'targetVisibility': False,
            'isAnimating': False,
        },
        'timeDisplayAnimation': {
            'progress': 0,
            'targetVisibility': False,
            'isAnimating': False,
        },
        'boost': {
            'current': 1.0,
            'target': 1.0,
        },
        'endOfFileReset': {
            'isActive': False,
            'startTime': None,
        },
    },

    'interaction': {
        'isDragging': False,
        'dragStartPosition': None,
        'dragCurrentPosition': None,
        'dragStartAngle': None,
        'dragStartPlayhead': None,
        'isScrubbing': False,
        'scrubStartTime': 0,
        'lastScrubTime': 0,
        'scrubDirection': 1,
        'scrubPosition': 0,
        'previewDuration': 0,
        'wasPlaying': False,
        'hasAudioSource': False,
        'lastUpdateTime': 0,
    },

    'render': {
        'components': {
            'waveform': True,
            'playhead': True,
            'button': True,
            'timeDisplay': True,
            'background': True,
        },
        'cache': {
            'gradient': None,
            'gradientParams': None,
            'lastWaveformData': None,
        },
        'performance': {
            'waveformRenderTime': 0,
            'playheadRenderTime': 0,
            'compositeTime': 0,
            'frameTime': 0,
        },
    },

    'ui': {
        'error': None,
        'errorMessage': '',
        'isErrorVisible': False,
        'isLoading': False,
        'loadingMessage': '',
        'successMessage': '',
        'isSuccessVisible': False,
        'tooltip': {
            'text': '',
            'isVisible': False,
            'x': 0,
            'y': 0,
        },
    },

    'settings': {
        'defaultVolume': 1.0,
        'enableScrubPreview': True,
        'scrubPreviewVolume': 0.7,
        'enableAnimations': True,
        'enableLayerOptimization': True,
        'showTimeDisplay': True,
        'showDebugInfo': False,
        'enablePerformanceMonitoring': False,
        'targetFPS': 60,
        'lastUrl': '',
        'lastVolume': 1.0,
    },
}

SECTIONS = tuple(DEFAULT_STATE.keys())
