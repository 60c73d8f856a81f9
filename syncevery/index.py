# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import os
from pathlib import Path
from typing import Callable, Iterator

from .paths import IgnoreMatcher, normalize, is_same_or_child, walk
from .log import logger

class DestinationIndex:
	'''
	Multi-map from fingerprint to the destination files that have it, in the order they were found. Only built with strong fingerprints; weak ones are too collision-prone to justify a rename.
	'''

	def __init__(self) -> None:
		self._entries : dict[str, list[Path]] = {}

	@classmethod
	def build(cls, dst_root:Path, *, fingerprint:Callable[[str], str], ignore:IgnoreMatcher) -> "DestinationIndex":
		'''Fingerprints every regular file under `dst_root` whose source equivalent is not ignored.'''

		index = cls()
		for entry in walk(dst_root, skip=lambda entry: ignore.matches_dst(entry.path)):
			if not entry.is_file(follow_symlinks=False):
				continue
			fp = fingerprint(entry.path)
			if fp:
				index.add(fp, Path(entry.path))
		logger.debug(f"Destination index ready ({len(index)} entries).")
		return index

	def __len__(self) -> int:
		return sum(len(paths) for paths in self._entries.values())

	def __bool__(self) -> bool:
		return bool(self._entries)

	def __contains__(self, fp:str) -> bool:
		return fp in self._entries

	def __iter__(self) -> Iterator[tuple[str, Path]]:
		for fp, paths in self._entries.items():
			for path in paths:
				yield fp, path

	def add(self, fp:str, path:Path) -> None:
		self._entries.setdefault(fp, []).append(path)

	def candidates(self, fp:str) -> list[Path]:
		return list(self._entries.get(fp, ()))

	def remove(self, fp:str, path:Path) -> None:
		paths = self._entries.get(fp)
		if not paths:
			return
		norm = normalize(path)
		for i, p in enumerate(paths):
			if normalize(p) == norm:
				del paths[i]
				break
		if not paths:
			del self._entries[fp]

	def remove_under(self, dir:Path) -> int:
		'''Drops every entry at or below `dir`. Returns how many were dropped.'''

		dir_norm = normalize(dir)
		removed = 0
		for fp in list(self._entries):
			paths = self._entries[fp]
			kept = [p for p in paths if not is_same_or_child(dir_norm, normalize(p))]
			removed += len(paths) - len(kept)
			if kept:
				self._entries[fp] = kept
			else:
				del self._entries[fp]
		return removed

class DirFingerprintCache:
	'''Lazily computed set of file fingerprints under a directory, memoized by normalized path.'''

	def __init__(self, fingerprint:Callable[[str], str]):
		self.fingerprint = fingerprint
		self._cache : dict[str, frozenset[str]] = {}
		self._files : dict[str, str] = {} # nested directories share file fingerprints

	def get(self, dir:str | os.PathLike[str], *, is_ignored:Callable[[str], bool]) -> frozenset[str]:
		key = normalize(dir)
		cached = self._cache.get(key)
		if cached is not None:
			return cached
		fps = set()
		for entry in walk(dir, skip=lambda entry: is_ignored(entry.path)):
			if not entry.is_file(follow_symlinks=False):
				continue
			fp = self._file_fingerprint(entry.path)
			if fp:
				fps.add(fp)
		result = frozenset(fps)
		self._cache[key] = result
		return result

	def discard_containing(self, path:str | os.PathLike[str]) -> None:
		'''Forgets every cached directory that `path` lies in, and every file fingerprint at or below it, once `path` has been moved away or deleted.'''

		norm = normalize(path)
		for key in [key for key in self._cache if is_same_or_child(key, norm)]:
			del self._cache[key]
		for key in [key for key in self._files if is_same_or_child(norm, key)]:
			del self._files[key]

	def _file_fingerprint(self, path:str) -> str:
		key = normalize(path)
		fp = self._files.get(key)
		if fp is None:
			fp = self.fingerprint(path)
			self._files[key] = fp
		return fp
