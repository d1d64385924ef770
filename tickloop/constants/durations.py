"""Beat-based duration constants for event lengths and loop sizes.

All values are in **beats**, where 1.0 = one quarter note. Use these to express
offsets and durations in musical terms instead of raw floats::

    import tickloop.constants.durations as dur

    riff = tickloop.event.make_events([
        (0,            60, dur.SIXTEENTH),
        (dur.EIGHTH,   63, dur.SIXTEENTH),
        (dur.QUARTER,  67, dur.DOTTED_EIGHTH),
    ])
"""

SIXTYFOURTH = 0.0625
THIRTYSECOND = 0.125
SIXTEENTH = 0.25
DOTTED_SIXTEENTH = 0.375
TRIPLET_EIGHTH = 1 / 3
EIGHTH = 0.5
DOTTED_EIGHTH = 0.75
TRIPLET_QUARTER = 2 / 3
QUARTER = 1.0
DOTTED_QUARTER = 1.5
HALF = 2.0
DOTTED_HALF = 3.0
WHOLE = 4.0

# Used whenever an event arrives without a usable duration.
DEFAULT_DURATION = THIRTYSECOND
