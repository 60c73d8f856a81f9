# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import os
from pathlib import Path
from typing import Generator, Iterator

from .config import Mode, SyncRequest
from .fingerprint import Fingerprinter
from .index import DestinationIndex, DirFingerprintCache
from .operations import Action, CreateDir, CopyFile, RenameFile, RenameDir, DeletePath, SkipIgnored, Noop
from .paths import IgnoreMatcher, normalize, is_same_or_child, src_equivalent, staging_path, list_dir, walk
from .log import logger, _error_summary

MOVE_RATIO = 0.85 # share of a source dir's fingerprints a dst dir must hold to be renamed into place

class Reservations:
	'''
	Destination paths the planner has committed to. A path is reserved if it was reserved exactly, or if it lies in a reserved directory's subtree and was not released from it. Released entries are those of a renamed directory that have no source counterpart, which the mirror pass must still remove.
	'''

	def __init__(self) -> None:
		self.paths    : set[str] = set()
		self.dirs     : set[str] = set()
		self.released : dict[str, Path] = {}
		self.origins  : dict[str, Path] = {} # where a released entry sits until its directory is renamed

	def reserve(self, path:Path) -> None:
		self.paths.add(normalize(path))

	def reserve_dir(self, path:Path) -> None:
		self.dirs.add(normalize(path))

	def release(self, path:Path, origin:Path) -> None:
		norm = normalize(path)
		self.released[norm] = path
		self.origins[norm]  = origin

	def __contains__(self, path:Path) -> bool:
		norm = normalize(path)
		if norm in self.paths:
			return True
		if any(is_same_or_child(r, norm) for r in self.released):
			return False
		return any(is_same_or_child(d, norm) for d in self.dirs)

class Planner:
	'''
	Decides, entry by entry, what has to happen to the destination.

	`actions()` is a generator walking the source in sorted pre-order. Whoever consumes it is expected to carry out each action before asking for the next one (copies may be deferred), because later decisions look at the destination as earlier ones left it. In a dry run nothing is carried out, so the planner keeps track of the paths it has moved or deleted and treats them as absent.
	'''

	def __init__(self, request:SyncRequest):
		self.request  = request
		self.src_root = request.source
		self.dst_root = request.destination

		self.fingerprint = Fingerprinter(strong=request.strong_hash)
		self.ignore      = IgnoreMatcher(request.ignore, src_root=self.src_root, dst_root=self.dst_root)
		self.index       = DestinationIndex()
		self.dir_fps     = DirFingerprintCache(self.fingerprint)
		self.reserved    = Reservations()

		self.moved_src_roots : list[str] = []
		self._gone           : set[str]  = set()
		self._started        : bool      = False

	@property
	def moves_enabled(self) -> bool:
		# weak fingerprints are never trusted for renames
		return self.request.strong_hash and self.request.mode is Mode.DIRECTORY

	def actions(self) -> Iterator[Action]:
		if self._started:
			raise RuntimeError("A plan can only be consumed once")
		self._started = True

		if self.request.mode is Mode.FILE:
			yield from self._plan_single_file()
			return

		if not self._exists(self.dst_root):
			self.reserved.reserve(self.dst_root)
			yield CreateDir(self.dst_root)
		elif self.moves_enabled:
			logger.debug("Building destination fingerprint index...")
			self.index = DestinationIndex.build(self.dst_root, fingerprint=self.fingerprint, ignore=self.ignore)

		yield from self._visit(self.src_root)

		if self.request.mirror:
			yield from self._mirror()

	# -------------------------------------------------------------------------
	# Traversal

	def _visit(self, dir:Path) -> Iterator[Action]:
		for entry in list_dir(dir):
			src    = Path(entry.path)
			target = self.dst_root / src.relative_to(self.src_root)

			if self._under_moved_root(src):
				continue

			if self.ignore.matches(src):
				yield SkipIgnored(src)
				continue

			if entry.is_dir(follow_symlinks=False):
				descend = yield from self._plan_dir(src, target)
				if descend:
					yield from self._visit(src)
			elif entry.is_file():
				yield from self._plan_file(src, target)
			else:
				logger.debug(f"Skipping entry that is neither a file nor a directory: {src}")

	def _plan_dir(self, src:Path, target:Path) -> Generator[Action, None, bool]:
		'''Returns whether to descend into `src`.'''

		if self._exists(target):
			if os.path.isdir(target) and not os.path.islink(target):
				self.reserved.reserve(target)
				return True
			yield DeletePath(target)
			self._consume(target)

		if self.moves_enabled:
			candidate = self._find_dir_move(src, target)
			if candidate is not None:
				yield from self._move_dir(src, candidate, target)
				return False

		self.reserved.reserve(target)
		yield CreateDir(target)
		return True

	def _plan_file(self, src:Path, target:Path) -> Iterator[Action]:
		if self._exists(target) and os.path.isdir(target) and not os.path.islink(target):
			if self._keeps_ignored(src, target):
				self.reserved.reserve(target)
				return
			yield DeletePath(target)
			self._consume(target)

		if not self._exists(target):
			if self.moves_enabled and self.index:
				fp = self.fingerprint(src)
				candidate = self._find_file_move(fp) if fp else None
				if candidate is not None:
					self.reserved.reserve(target)
					self.reserved.reserve(candidate)
					self.index.remove(fp, candidate)
					self._consume(candidate)
					yield RenameFile(candidate, target)
					return
			self._reserve_copy(target)
			yield CopyFile(src, target)
			return

		self.reserved.reserve(target)
		if self.needs_copy(src, target):
			self._reserve_copy(target)
			yield CopyFile(src, target, update=True)
		else:
			yield Noop(f"up to date: {os.path.relpath(target, self.dst_root)}")

	def _plan_single_file(self) -> Iterator[Action]:
		src = self.src_root
		if self.ignore.matches(src):
			yield SkipIgnored(src)
			return
		if not self._exists(self.dst_root):
			yield CreateDir(self.dst_root)
		yield from self._plan_file(src, self.request.file_target)

	def needs_copy(self, src:Path, target:Path) -> bool:
		'''Whether an existing `target` must be refreshed from `src`. Anything that cannot be checked counts as changed.'''

		try:
			src_stat = os.stat(src)
			dst_stat = os.stat(target)
		except OSError as e:
			logger.debug(f"Cannot compare, copying. {_error_summary(e)}")
			return True

		if not self.request.strong_hash:
			return src_stat.st_mtime > dst_stat.st_mtime

		if src_stat.st_size != dst_stat.st_size:
			return True
		if src_stat.st_size == 0:
			return False
		src_fp = self.fingerprint(src)
		dst_fp = self.fingerprint(target)
		if not src_fp or not dst_fp:
			return True
		return src_fp != dst_fp

	# -------------------------------------------------------------------------
	# Move detection

	def _find_file_move(self, fp:str) -> Path | None:
		for candidate in self.index.candidates(fp):
			if not self._exists(candidate):
				continue
			if self.ignore.matches_dst(candidate):
				continue
			if candidate in self.reserved:
				continue
			return candidate
		return None

	def _find_dir_move(self, src:Path, target:Path) -> Path | None:
		'''The first sibling of `target` holding at least `MOVE_RATIO` of the fingerprints under `src`.'''

		parent = target.parent
		if not self._exists(parent) or not os.path.isdir(parent):
			return None
		candidates = [
			Path(entry.path) for entry in list_dir(parent)
			if entry.is_dir(follow_symlinks=False) and self._is_move_candidate(Path(entry.path))
		]
		if not candidates:
			return None

		src_fps = self.dir_fps.get(src, is_ignored=self.ignore.matches)
		if not src_fps:
			return None
		for candidate in candidates:
			cand_fps = self.dir_fps.get(candidate, is_ignored=self._is_dst_unavailable)
			ratio = len(src_fps & cand_fps) / len(src_fps)
			logger.debug(f"Overlap {ratio:.2f}: {candidate} -> {target}")
			if ratio >= MOVE_RATIO:
				return candidate
		return None

	def _is_move_candidate(self, candidate:Path) -> bool:
		return candidate not in self.reserved and self._exists(candidate) and not self.ignore.matches_dst(candidate)

	def _move_dir(self, src:Path, candidate:Path, target:Path) -> Iterator[Action]:
		# worked out against the candidate before it moves
		follow_ups = list(self._reconcile(src, candidate, target))
		self._release_extras(src, candidate, target)

		self.reserved.reserve_dir(target)
		self.reserved.reserve_dir(candidate)
		self.moved_src_roots.append(normalize(src))
		self._consume(candidate)
		removed = self.index.remove_under(candidate)
		logger.debug(f"Dropped {removed} index entries under {candidate}")

		yield RenameDir(candidate, target)
		yield from follow_ups

	def _reconcile(self, src_dir:Path, before_dir:Path, after_dir:Path) -> Iterator[Action]:
		'''Copies the parts of `src_dir` that a directory renamed from `before_dir` to `after_dir` lacks or has outdated.'''

		for entry in list_dir(src_dir):
			src = Path(entry.path)
			if self.ignore.matches(src):
				continue
			before = before_dir / entry.name
			after  = after_dir  / entry.name

			if entry.is_dir(follow_symlinks=False):
				if self._exists(before) and os.path.isdir(before) and not os.path.islink(before):
					yield from self._reconcile(src, before, after)
					continue
				if self._exists(before):
					yield DeletePath(after)
				self.reserved.reserve(after)
				yield CreateDir(after)
				yield from self._reconcile(src, before, after)
			elif entry.is_file():
				if not self._exists(before):
					self._reserve_copy(after)
					yield CopyFile(src, after)
				elif os.path.isdir(before) and self._keeps_ignored(src, before):
					continue
				elif os.path.isdir(before) or self.needs_copy(src, before):
					self._reserve_copy(after)
					yield CopyFile(src, after, update=True)

	def _release_extras(self, src_dir:Path, before_dir:Path, after_dir:Path) -> None:
		'''Releases the entries of a renamed directory that have no source counterpart.'''

		for entry in list_dir(before_dir):
			src = src_dir / entry.name
			if self.ignore.matches(src) or not self._exists(Path(entry.path)):
				continue
			if not os.path.lexists(src):
				self.reserved.release(after_dir / entry.name, Path(entry.path))
			elif entry.is_dir(follow_symlinks=False) and os.path.isdir(src):
				self._release_extras(src, Path(entry.path), after_dir / entry.name)

	# -------------------------------------------------------------------------
	# Mirror pass

	def _mirror(self) -> Iterator[Action]:
		'''Deletes destination entries that are neither reserved nor backed by a source entry, deepest first.'''

		logger.debug("Checking for entries to delete from the destination...")
		doomed    : dict[str, Path] = {}
		protected : set[str] = set() # directories holding ignored entries

		def shielded(path:Path) -> bool:
			if not self.ignore.matches_dst(path):
				return False
			self._protect_parents(path, protected)
			return True

		# consumed paths are already gone in a wet run
		skip = lambda entry: shielded(Path(entry.path)) or not self._exists(Path(entry.path))
		for entry in walk(self.dst_root, skip=skip):
			path = Path(entry.path)
			if path in self.reserved:
				continue
			src = src_equivalent(path, dst_root=self.dst_root, src_root=self.src_root)
			if src is None or os.path.lexists(src):
				continue
			doomed[normalize(path)] = path

		if self.request.dry_run:
			# not yet renamed into place, so the walk above could not see them
			for norm, path in self.reserved.released.items():
				doomed.setdefault(norm, path)
				origin = self.reserved.origins[norm]
				if not os.path.isdir(origin) or os.path.islink(origin):
					continue
				moved_path = lambda entry: path / os.path.relpath(entry.path, origin)
				for entry in walk(origin, skip=lambda entry: shielded(moved_path(entry))):
					moved = moved_path(entry)
					doomed.setdefault(normalize(moved), moved)

		for norm, path in sorted(doomed.items(), key=lambda item: str(item[1]), reverse=True):
			if norm in protected:
				logger.debug(f"Keeping directory that holds ignored entries: {path}")
				continue
			yield DeletePath(path)

	# -------------------------------------------------------------------------
	# Helpers

	def _reserve_copy(self, target:Path) -> None:
		self.reserved.reserve(target)
		self.reserved.reserve(staging_path(target))

	def _protect_parents(self, path:Path, protected:set[str]) -> None:
		dst_norm = normalize(self.dst_root)
		for parent in path.parents:
			norm = normalize(parent)
			if norm == dst_norm or not is_same_or_child(dst_norm, norm):
				break
			protected.add(norm)

	def _consume(self, path:Path) -> None:
		'''Marks a destination path as moved away or deleted.'''
		self._gone.add(normalize(path))
		self.dir_fps.discard_containing(path)

	def _exists(self, path:Path) -> bool:
		norm = normalize(path)
		if any(is_same_or_child(g, norm) for g in self._gone):
			return False
		return os.path.lexists(path)

	def _keeps_ignored(self, src:Path, target:Path) -> bool:
		'''Whether the directory `target` cannot be replaced by the file `src` because ignored entries live below it.'''

		if not self.ignore.covers_below(src):
			return False
		logger.warning(f"Cannot replace directory with a file, it holds ignored entries: {target}")
		return True

	def _is_dst_unavailable(self, path:str) -> bool:
		return self.ignore.matches_dst(path) or not self._exists(Path(path))

	def _under_moved_root(self, src:Path) -> bool:
		if not self.moved_src_roots:
			return False
		norm = normalize(src)
		return any(is_same_or_child(root, norm) for root in self.moved_src_roots)
