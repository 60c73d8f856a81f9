# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import os
import logging
from pathlib import Path
from typing import Callable, ClassVar
from dataclasses import dataclass, field

from .log import CHANGE

@dataclass(frozen=True)
class Action:
	'''
	One planned step. `summary()` gives the console line, using `show` to shorten paths.

	`cross_volume_fallback` tells the executor to emulate a failed cross-device rename with copy-then-delete.
	'''

	cross_volume_fallback : bool = field(default=False, kw_only=True)

	level : ClassVar[int] = CHANGE

	@property
	def is_change(self) -> bool:
		return self.level >= CHANGE

	def summary(self, show:Callable[[Path], str] = str) -> str:
		raise NotImplementedError

@dataclass(frozen=True)
class CreateDir(Action):
	target : Path

	def summary(self, show:Callable[[Path], str] = str) -> str:
		return f"D+ {show(self.target)}{os.sep}"

@dataclass(frozen=True)
class CopyFile(Action):
	src    : Path
	target : Path
	update : bool = False # the target exists and is being refreshed

	def summary(self, show:Callable[[Path], str] = str) -> str:
		if self.update:
			return f"U {show(self.target)}"
		return f"+ {show(self.target)}"

@dataclass(frozen=True)
class RenameFile(Action):
	src    : Path # in the destination tree
	target : Path
	cross_volume_fallback : bool = field(default=True, kw_only=True)

	def summary(self, show:Callable[[Path], str] = str) -> str:
		return f"R {show(self.src)} -> {show(self.target)}"

@dataclass(frozen=True)
class RenameDir(Action):
	src    : Path # in the destination tree
	target : Path
	cross_volume_fallback : bool = field(default=True, kw_only=True)

	def summary(self, show:Callable[[Path], str] = str) -> str:
		return f"R {show(self.src)}{os.sep} -> {show(self.target)}{os.sep}"

@dataclass(frozen=True)
class DeletePath(Action):
	path : Path

	def summary(self, show:Callable[[Path], str] = str) -> str:
		return f"- {show(self.path)}"

@dataclass(frozen=True)
class SkipIgnored(Action):
	path : Path

	level : ClassVar[int] = logging.INFO

	def summary(self, show:Callable[[Path], str] = str) -> str:
		return f"I {show(self.path)}"

@dataclass(frozen=True)
class Noop(Action):
	reason : str

	level : ClassVar[int] = logging.DEBUG

	def summary(self, show:Callable[[Path], str] = str) -> str:
		return f"= {self.reason}"
