"""MIDI velocity and amplitude constants.

Events carry an amplitude in [0, 1]. MIDI sinks and the MIDI file reader
convert between that and the 0-127 velocity range.
"""

# MIDI standard range
MIN_VELOCITY = 0
MAX_VELOCITY = 127

DEFAULT_VELOCITY = 100

# Amplitude range carried by events
MIN_AMPLITUDE = 0.0
MAX_AMPLITUDE = 1.0
DEFAULT_AMPLITUDE = DEFAULT_VELOCITY / MAX_VELOCITY
