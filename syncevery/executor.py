# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import os
import stat
import errno
import shutil
import contextlib
from pathlib import Path
from concurrent.futures import Future, ThreadPoolExecutor

from .config import SyncRequest
from .errors import CopyError, RenameError, DeleteError
from .operations import Action, CreateDir, CopyFile, RenameFile, RenameDir, DeletePath, SkipIgnored
from .paths import staging_path
from .results import Results
from .log import logger, _error_summary

def default_workers() -> int:
	return min(32, os.cpu_count() or 1)

class Executor:
	'''
	Carries out actions in the order they arrive. Copies go to a thread pool and are only awaited in `wait()`; everything else runs right away on the calling thread. In a dry run actions are only logged.
	'''

	def __init__(self, request:SyncRequest, results:Results, *, workers:int | None = None):
		self.request = request
		self.results = results
		self.dry_run = request.dry_run
		self.workers = workers or default_workers()

		self._pool   : ThreadPoolExecutor | None = None
		self._copies : list[tuple[CopyFile, int, Future]] = []

	def __enter__(self) -> "Executor":
		return self

	def __exit__(self, *exc_info) -> None:
		if self._pool is not None:
			self._pool.shutdown(wait=True)
			self._pool = None

	def show(self, path:Path) -> str:
		'''Shortens `path` relative to whichever root it is under.'''

		for root in (self.request.destination, self.request.source):
			try:
				rel = path.relative_to(root)
			except ValueError:
				continue
			return str(rel) if rel.parts else str(path)
		return str(path)

	def apply(self, action:Action) -> None:
		logger.log(action.level, action.summary(self.show))

		if isinstance(action, SkipIgnored):
			self.results.ignored += 1
		if not action.is_change:
			return

		self.results.planned += 1
		if self.dry_run:
			self.results.byte_diff += _byte_diff(action)
			return

		if isinstance(action, CopyFile):
			self._dispatch_copy(action)
			return

		byte_diff = _byte_diff(action)
		try:
			if isinstance(action, CreateDir):
				os.makedirs(action.target, exist_ok=True)
			elif isinstance(action, (RenameFile, RenameDir)):
				_rename(action)
			elif isinstance(action, DeletePath):
				_delete(action.path)
			else:
				raise TypeError(f"Unknown action: {action!r}")
		except (RenameError, DeleteError) as e:
			logger.error(_error_summary(e))
			self.results.tally_failure(action, e)
		except OSError as e:
			logger.warning(_error_summary(e))
			self.results.tally_failure(action, e)
		else:
			self.results.tally_success(action, byte_diff)

	def _dispatch_copy(self, action:CopyFile) -> None:
		if self._pool is None:
			self._pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="syncevery-copy")
		byte_diff = _byte_diff(action)
		future = self._pool.submit(_copy, action.src, action.target)
		self._copies.append((action, byte_diff, future))

	def wait(self) -> None:
		'''Blocks until every dispatched copy has finished, recording how each went.'''

		if not self._copies:
			return
		logger.debug(f"Waiting for {len(self._copies)} copy tasks to complete...")
		for action, byte_diff, future in self._copies:
			try:
				future.result()
			except CopyError as e:
				self.results.tally_failure(action, e)
			else:
				self.results.tally_success(action, byte_diff)
		self._copies.clear()

def _byte_diff(action:Action) -> int:
	'''Estimated change in destination size, counting files only.'''

	try:
		if isinstance(action, CopyFile):
			old_size = action.target.stat().st_size if action.target.is_file() else 0
			return action.src.stat().st_size - old_size
		if isinstance(action, DeletePath) and action.path.is_file():
			return -action.path.stat().st_size
	except OSError:
		pass
	return 0

def _copy(src:Path, dst:Path) -> None:
	'''
	Copy file from `src` to `dst`, keeping timestamp metadata. The data is first written to a hidden sibling and then moved over `dst`, so `dst` is never seen half-written. Runs on a worker thread; failures are logged here and raised as `CopyError`.
	'''

	dst_tmp = staging_path(dst)
	delete_tmp = False
	try:
		dst.parent.mkdir(parents=True, exist_ok=True)
		shutil.copy2(src, dst_tmp)
		delete_tmp = True
		if dst.is_dir() and not dst.is_symlink():
			shutil.rmtree(dst)
		try:
			os.replace(dst_tmp, dst)
		except PermissionError as e:
			# Remove read-only flag and try again
			if not dst.exists() or dst.stat().st_mode & stat.S_IWRITE:
				raise e
			dst.chmod(stat.S_IWRITE | stat.S_IREAD)
			os.replace(dst_tmp, dst)
		delete_tmp = False
		logger.debug(f"Copied {src} -> {dst}")
	except OSError as e:
		logger.error(f"Cannot copy {src} -> {dst}. {_error_summary(e)}")
		raise CopyError(f"Cannot copy {src} -> {dst}") from e
	finally:
		if delete_tmp:
			with contextlib.suppress(OSError):
				dst_tmp.unlink()

def _rename(action:RenameFile | RenameDir) -> None:
	'''Renames within the destination, emulating the rename with copy-then-delete when it crosses devices.'''

	src, dst = action.src, action.target
	try:
		dst.parent.mkdir(parents=True, exist_ok=True)
		os.rename(src, dst)
		return
	except OSError as e:
		if not (action.cross_volume_fallback and e.errno == errno.EXDEV):
			raise RenameError(f"Cannot rename {src} -> {dst}") from e
		logger.debug(f"Cross-volume rename, copying instead: {src} -> {dst}")

	try:
		if isinstance(action, RenameDir):
			shutil.copytree(src, dst, symlinks=True)
		else:
			shutil.copy2(src, dst)
		_delete(src)
	except (OSError, DeleteError) as e:
		raise RenameError(f"Cannot move {src} -> {dst} across volumes") from e

def _delete(path:Path) -> None:
	'''Removes a file or a whole directory tree. Missing paths are fine.'''

	try:
		if not os.path.lexists(path):
			return
		if path.is_dir() and not path.is_symlink():
			shutil.rmtree(path)
		else:
			path.unlink()
	except OSError as e:
		raise DeleteError(f"Cannot delete {path}") from e
