# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import os
import json
from enum import Enum
from pathlib import Path
from typing import Any, Iterable
from dataclasses import dataclass

from .errors import PreconditionError
from .paths import normalize, is_same_or_child
from .log import logger, _error_summary

SETTINGS_FILE = "settings.json"

class Mode(Enum):
	DIRECTORY = "dir"
	FILE      = "file"

def _abspath(path:str | os.PathLike[str]) -> Path:
	path = os.path.expanduser(os.fspath(path))
	return Path(os.path.abspath(path))

@dataclass(frozen=True)
class SyncRequest:
	'''
	Immutable description of one sync run.

	In `Mode.DIRECTORY` the tree at `source` is synced into `destination`. In `Mode.FILE` the file `source` is synced to `destination / source.name`. `ignore` holds source-space paths; anything at or below one of them is left alone on both sides. `strong_hash` selects SHA-256 fingerprints and enables move detection.
	'''

	mode        : Mode
	source      : Path
	destination : Path
	ignore      : tuple[Path, ...] = ()
	mirror      : bool = False
	dry_run     : bool = False
	strong_hash : bool = False

	@classmethod
	def create(
			cls,
			mode        : Mode | str,
			source      : str | os.PathLike[str],
			destination : str | os.PathLike[str],
			*,
			ignore      : Iterable[str | os.PathLike[str]] = (),
			mirror      : bool = False,
			dry_run     : bool = False,
			strong_hash : bool = False,
		) -> "SyncRequest":
		'''Builds a request from loosely typed arguments, making every path absolute.'''

		if not isinstance(source, (str, os.PathLike)):
			raise TypeError(f"Bad type for arg 'source' (expected str or PathLike): {source}")
		if not isinstance(destination, (str, os.PathLike)):
			raise TypeError(f"Bad type for arg 'destination' (expected str or PathLike): {destination}")
		for name, val in (("mirror", mirror), ("dry_run", dry_run), ("strong_hash", strong_hash)):
			if not isinstance(val, bool):
				raise TypeError(f"Bad type for arg '{name}' (expected bool): {val}")

		if not isinstance(mode, Mode):
			try:
				mode = Mode(mode)
			except ValueError:
				raise PreconditionError(f"Invalid mode (expected 'dir' or 'file'): {mode}") from None

		return cls(
			mode        = mode,
			source      = _abspath(source),
			destination = _abspath(destination),
			ignore      = tuple(_abspath(p) for p in ignore),
			mirror      = mirror,
			dry_run     = dry_run,
			strong_hash = strong_hash,
		)

	@property
	def file_target(self) -> Path:
		'''Where the source file lands in `Mode.FILE`.'''
		return self.destination / self.source.name

	def validate(self) -> None:
		'''Raises `PreconditionError` if the run cannot start.'''

		if not isinstance(self.mode, Mode):
			raise PreconditionError(f"Invalid mode: {self.mode}")
		if not self.source.exists():
			raise PreconditionError(f"Source does not exist: {self.source}")
		if self.destination.exists() and not self.destination.is_dir():
			raise PreconditionError(f"Destination is not a directory: {self.destination}")

		if self.mode is Mode.FILE:
			if not self.source.is_file():
				raise PreconditionError(f"Source is not a file: {self.source}")
			if normalize(self.file_target.resolve()) == normalize(self.source.resolve()):
				raise PreconditionError(f"Source and destination are the same file: {self.source}")
			return

		if not self.source.is_dir():
			raise PreconditionError(f"Source is not a directory: {self.source}")
		src_norm = normalize(self.source.resolve())
		dst_norm = normalize(self.destination.resolve())
		if src_norm == dst_norm:
			raise PreconditionError("Source and destination point to the same directory")
		if is_same_or_child(src_norm, dst_norm):
			raise PreconditionError("Destination cannot be inside the source")
		if is_same_or_child(dst_norm, src_norm):
			raise PreconditionError("Source cannot be inside the destination")

def _as_bool(val:Any) -> bool:
	# older settings files store booleans as strings
	return val is True or val == "true"

def load_settings(path:str | os.PathLike[str] = SETTINGS_FILE) -> dict[str, Any]:
	'''
	Reads stored command-line settings. Returns an empty `dict` if there are none or they cannot be read. Boolean values are normalized to `bool`.
	'''

	try:
		with open(path, encoding="utf-8") as f:
			settings = json.load(f)
	except FileNotFoundError:
		return {}
	except (OSError, ValueError) as e:
		logger.warning(f"Ignoring unreadable settings. {_error_summary(e)}")
		return {}
	if not isinstance(settings, dict):
		logger.warning(f"Ignoring malformed settings: {path}")
		return {}

	for key in ("mirror", "verbose", "sha256"):
		if key in settings:
			settings[key] = _as_bool(settings[key])
	ignore = settings.get("ignore", [])
	settings["ignore"] = [str(p) for p in ignore] if isinstance(ignore, list) else []
	return settings

def save_settings(request:SyncRequest, *, verbose:bool = False, path:str | os.PathLike[str] = SETTINGS_FILE) -> None:
	'''Stores the options of `request` so a later bare invocation can repeat it.'''

	settings = {
		"mode"    : request.mode.value,
		"src"     : str(request.source),
		"dst"     : str(request.destination),
		"mirror"  : request.mirror,
		"verbose" : verbose,
		"sha256"  : request.strong_hash,
		"ignore"  : [str(p) for p in request.ignore],
	}
	with open(path, "w", encoding="utf-8") as f:
		json.dump(settings, f, indent=2)
		f.write("\n")
