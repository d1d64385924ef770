"""Constants for tickloop.

This package contains three sets of constants:

- ``tickloop.constants.durations`` - Beat-based durations for event lengths and loop sizes
- ``tickloop.constants.velocity`` - MIDI velocity and amplitude defaults
- ``tickloop.constants.timing`` - Tempo defaults and MIDI file resolution
"""
