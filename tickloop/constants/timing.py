"""Tempo and resolution constants.

- ``DEFAULT_BPM = 120`` - the MIDI file default when no ``set_tempo`` is present
- ``DEFAULT_BEATS_PER_BAR = 4`` - 4/4 unless a ``time_signature`` says otherwise
- ``DEFAULT_PPQ = 480`` - ticks per quarter note for files written by tickloop
"""

DEFAULT_BPM = 120
DEFAULT_BEATS_PER_BAR = 4
DEFAULT_PPQ = 480

# Default lookahead (beats) for queueing the next loop iteration.
DEFAULT_LOOKAHEAD = 1.0

# Spin-wait threshold (seconds) for the hybrid sleep+spin clock.
SPIN_THRESHOLD = 0.001

MIDI_CHANNELS = 16
