# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import os
from pathlib import Path
from typing import Callable, Iterable, Iterator

from .errors import TraversalError
from .log import logger, _error_summary

def normalize(path:str | os.PathLike[str]) -> str:
	'''
	Comparison form of a path: forward slashes, case-folded where the OS is case-insensitive, no trailing separator except on the root itself. Never used for I/O.

	>>> normalize("/a/b/")
	'/a/b'
	>>> normalize("/")
	'/'
	>>> normalize("a//b/./c/")
	'a/b/c'
	'''

	s = os.path.normcase(os.path.normpath(os.fspath(path)))
	if os.sep != "/":
		s = s.replace(os.sep, "/")
	return s.rstrip("/") or "/"

def is_same_or_child(dir_norm:str, path_norm:str) -> bool:
	'''
	Whether normalized `path_norm` is `dir_norm` or lies beneath it.

	>>> is_same_or_child("/a/b", "/a/b")
	True
	>>> is_same_or_child("/a/b", "/a/b/c")
	True
	>>> is_same_or_child("/a/b", "/a/bc")
	False
	>>> is_same_or_child("/", "/a")
	True
	'''

	if path_norm == dir_norm:
		return True
	if not dir_norm:
		return False
	prefix = dir_norm if dir_norm.endswith("/") else dir_norm + "/"
	return path_norm.startswith(prefix)

def src_equivalent(dst_entry:Path, *, dst_root:Path, src_root:Path) -> Path | None:
	'''Maps a destination path to the source path it mirrors, or `None` if it is not under `dst_root`.'''

	try:
		rel = os.path.relpath(dst_entry, dst_root)
	except ValueError:
		# different drives
		return None
	if rel == os.curdir:
		return src_root
	if rel == os.pardir or rel.startswith(os.pardir + os.sep):
		return None
	return src_root / rel

class IgnoreMatcher:
	'''Tests source paths (and, through their source equivalents, destination paths) against a list of ignore roots.'''

	def __init__(self, ignore:Iterable[str | os.PathLike[str]], *, src_root:Path, dst_root:Path):
		self.src_root = src_root
		self.dst_root = dst_root
		self.roots    = [norm for norm in (normalize(p) for p in ignore) if norm]

	def __bool__(self) -> bool:
		return bool(self.roots)

	def matches(self, src_path:str | os.PathLike[str]) -> bool:
		if not self.roots:
			return False
		norm = normalize(src_path)
		return any(is_same_or_child(root, norm) for root in self.roots)

	def covers_below(self, src_path:str | os.PathLike[str]) -> bool:
		'''Whether some ignore root lies strictly beneath `src_path`.'''

		if not self.roots:
			return False
		norm = normalize(src_path)
		return any(root != norm and is_same_or_child(norm, root) for root in self.roots)

	def matches_dst(self, dst_path:str | os.PathLike[str]) -> bool:
		'''A destination entry is ignored when its source equivalent is.'''

		if not self.roots:
			return False
		src_path = src_equivalent(Path(dst_path), dst_root=self.dst_root, src_root=self.src_root)
		if src_path is None:
			return False
		return self.matches(src_path)

def staging_path(target:Path) -> Path:
	'''Hidden sibling a copy is written to before it replaces `target`.'''
	return target.with_name(f".{target.name}.syncevery-tmp")

def list_dir(path:str | os.PathLike[str]) -> list[os.DirEntry]:
	'''Entries of `path` sorted by name. A directory that cannot be listed is logged and treated as empty.'''

	try:
		return _list_dir(path)
	except TraversalError as e:
		logger.warning(_error_summary(e))
		return []

def _list_dir(path:str | os.PathLike[str]) -> list[os.DirEntry]:
	try:
		with os.scandir(path) as it:
			entries = list(it)
	except OSError as e:
		raise TraversalError(f"Cannot list directory, skipping it: {path}") from e
	entries.sort(key=lambda entry: entry.name)
	return entries

def walk(root:str | os.PathLike[str], *, skip:Callable[[os.DirEntry], bool] | None = None) -> Iterator[os.DirEntry]:
	'''
	Yields the entries under `root` in sorted pre-order. Entries for which `skip(entry)` is true are neither yielded nor descended into. Symbolic links to directories are yielded but not followed.
	'''

	for entry in list_dir(root):
		if skip is not None and skip(entry):
			continue
		yield entry
		if entry.is_dir(follow_symlinks=False):
			yield from walk(entry.path, skip=skip)
