"""
tickloop - a tempo-driven event scheduler for live-coding music tools.

tickloop walks a list of beat-relative events and tells a sound-producing
collaborator when to start and stop each one. Timing is derived from a
tempo in beats per minute: an event at ``offset`` beats is activated at
``offset * 60000 / bpm`` milliseconds and deactivated ``duration`` beats
later. A fixed-length bar can be looped until stopped. The scheduler
itself makes no sound - it drives a sink: a MIDI port, a synth, a sample
player, or anything with ``activate()`` and ``deactivate()``.

- **Events from anywhere.** Hand-written tuples and dicts
  (``make_events()``), tick-timed data at any PPQ (``events_from_ticks()``),
  or Standard MIDI Files (``load_midi_file()``), with note-on/note-off
  pairs matched into durations.
- **Forgiving data, strict config.** Missing or malformed durations fall
  back to a short default and amplitudes are clamped to [0, 1]; a
  non-positive tempo fails immediately.
- **Isolated dispatch.** A sink call that raises is logged and reported
  as a ``"dispatch_error"`` event; every other note still plays.
- **Clean stop.** ``request_stop()`` is checked right before every
  dispatch, so nothing fires after it.
- **Render mode.** Simulate the timeline as fast as possible - handy for
  writing the result to a MIDI file and for tests.

Minimal example:

    ```python
    import tickloop

    riff = tickloop.make_events([
        (0.0, 60, 0.25),
        (0.5, 63, 0.25),
        (1.0, 67, 0.5, 0.7),
    ])

    _, port = tickloop.midi_utils.select_output_device()
    sink = tickloop.MidiOutputSink(port)

    tickloop.Scheduler(riff, tempo=120, sink=sink, loop_beats=2).play(bars=8)
    ```

Package-level exports: ``Event``, ``Tempo``, ``Scheduler``, ``make_events``,
``events_from_ticks``, ``load_midi_file``, ``save_midi_file``,
``CallbackSink``, ``MidiOutputSink``, ``RecordingSink``.
"""

import tickloop.event
import tickloop.midi_file
import tickloop.midi_utils
import tickloop.scheduler
import tickloop.sinks
import tickloop.tempo


Event = tickloop.event.Event
make_events = tickloop.event.make_events
events_from_ticks = tickloop.event.events_from_ticks
Tempo = tickloop.tempo.Tempo
Scheduler = tickloop.scheduler.Scheduler
load_midi_file = tickloop.midi_file.load_midi_file
save_midi_file = tickloop.midi_file.save_midi_file
CallbackSink = tickloop.sinks.CallbackSink
MidiOutputSink = tickloop.sinks.MidiOutputSink
RecordingSink = tickloop.sinks.RecordingSink
