"""YAML configuration for the ``python -m tickloop`` player.

Example ``tickloop.yaml``::

    sequencer:
      bpm: 96            # overrides the tempo stored in the MIDI file
      loop_beats: 4      # repeat the first 4 beats forever
      bars: 16           # ...or only 16 times
      lookahead: 1
      spin_wait: true
    midi:
      output_device: "IAC Driver Bus 1"
      channel: 0
    logging:
      level: INFO

Every key is optional; command-line flags take precedence over the file.
"""

import dataclasses
import logging
import os
import typing

import yaml

import tickloop.constants.timing


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "tickloop.yaml"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclasses.dataclass
class Config:

	"""Player settings, validated by ``validate()``."""

	bpm: typing.Optional[float] = None
	loop_beats: typing.Optional[float] = None
	bars: typing.Optional[int] = None
	lookahead: float = tickloop.constants.timing.DEFAULT_LOOKAHEAD
	spin_wait: bool = True
	output_device: typing.Optional[str] = None
	channel: int = 0
	log_level: str = "INFO"

	def validate (self) -> "Config":

		"""Raise ``ValueError`` for settings that cannot produce a playable schedule."""

		for name in ("bpm", "loop_beats", "bars", "lookahead", "channel"):
			value = getattr(self, name)
			if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
				raise ValueError(f"Config value {name!r} must be a number, got {value!r}")

		for name in ("bars", "channel"):
			value = getattr(self, name)
			if value is not None and not isinstance(value, int):
				raise ValueError(f"Config value {name!r} must be a whole number, got {value!r}")

		if self.bpm is not None and self.bpm <= 0:
			raise ValueError("BPM must be positive")

		if self.loop_beats is not None and self.loop_beats <= 0:
			raise ValueError("Loop length must be positive")

		if self.bars is not None and self.bars <= 0:
			raise ValueError("Bar limit must be positive")

		if self.lookahead < 0:
			raise ValueError("Lookahead cannot be negative")

		if not 0 <= self.channel < tickloop.constants.timing.MIDI_CHANNELS:
			raise ValueError("MIDI channel must be between 0 and 15")

		self.log_level = str(self.log_level).upper()

		if self.log_level not in _LOG_LEVELS:
			raise ValueError(f"Unknown log level {self.log_level!r}")

		return self


def _section (raw: typing.Dict[str, typing.Any], name: str) -> typing.Dict[str, typing.Any]:

	value = raw.get(name) or {}

	if not isinstance(value, dict):
		raise ValueError(f"Config section {name!r} must be a mapping")

	return value


def _get (section: typing.Dict[str, typing.Any], key: str, default: typing.Any) -> typing.Any:

	"""Look up a key, treating an explicit YAML null like a missing key."""

	value = section.get(key)

	return default if value is None else value


def from_dict (raw: typing.Optional[typing.Dict[str, typing.Any]]) -> Config:

	"""Build a validated ``Config`` from the nested YAML layout."""

	raw = raw or {}

	if not isinstance(raw, dict):
		raise ValueError("Config file must contain a mapping")

	sequencer = _section(raw, "sequencer")
	midi = _section(raw, "midi")
	logging_section = _section(raw, "logging")

	config = Config(
		bpm = sequencer.get("bpm"),
		loop_beats = sequencer.get("loop_beats"),
		bars = sequencer.get("bars"),
		lookahead = _get(sequencer, "lookahead", tickloop.constants.timing.DEFAULT_LOOKAHEAD),
		spin_wait = bool(_get(sequencer, "spin_wait", True)),
		output_device = midi.get("output_device"),
		channel = _get(midi, "channel", 0),
		log_level = _get(logging_section, "level", "INFO")
	)

	return config.validate()


def load_config (config_path: str = DEFAULT_CONFIG_PATH) -> Config:

	"""
	Load configuration from a YAML file.

	A missing file is not an error: a warning is logged and defaults are used.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return Config()

	with open(config_path, 'r') as f:
		try:
			raw = yaml.safe_load(f)
		except yaml.YAMLError as e:
			raise ValueError(f"{config_path} is not valid YAML: {e}") from e

	logger.info(f"Loaded config from {config_path}")

	return from_dict(raw)
