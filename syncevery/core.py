# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import os
import sys
import time
import logging
import traceback
from typing import Iterable, Iterator

from .config import Mode, SyncRequest
from .errors import PreconditionError
from .executor import Executor
from .operations import Action
from .planner import Planner
from .results import Results
from .log import logger, CHANGE, _ConsoleFilter, _ConsoleFormatter, _LogFileFormatter, _error_summary

class Plan:
	'''
	The actions for one request, produced lazily. Iterate it once; each action should be carried out before the next is requested.
	'''

	def __init__(self, request:SyncRequest):
		self.request = request
		self.planner = Planner(request)

	def __iter__(self) -> Iterator[Action]:
		return self.planner.actions()

def plan(request:SyncRequest) -> Plan:
	'''Validates `request` and returns its plan. Raises `PreconditionError` if the run cannot start.'''

	request.validate()
	return Plan(request)

def execute(plan:Plan, *, workers:int | None = None, results:Results | None = None) -> Results:
	'''Carries out `plan`, waits for every copy, and returns the tallies.'''

	if results is None:
		results = Results(plan.request)
	start = time.perf_counter()
	with Executor(plan.request, results, workers=workers) as executor:
		for action in plan:
			executor.apply(action)
		executor.wait()
	results.elapsed = time.perf_counter() - start
	results.success = True
	return results

def run(request:SyncRequest, *, workers:int | None = None) -> Results:
	return execute(plan(request), workers=workers)

def sync(
		src         : str | os.PathLike[str],
		dst         : str | os.PathLike[str],
		*,
		mode        : Mode | str = Mode.DIRECTORY,
		ignore      : Iterable[str | os.PathLike[str]] = (),
		mirror      : bool = False,
		dry_run     : bool = False,
		strong_hash : bool = False,
		workers     : int | None = None,
		verbose     : bool = False,
		color       : bool = False,
		log_file    : str | os.PathLike[str] | None = None,
		debug       : bool = False,
		quiet       : bool = False,
		very_quiet  : bool = False,
	) -> Results:
	'''
	Makes `dst` reflect `src`: new and changed files are copied, and with `mirror` anything in `dst` without a counterpart in `src` is deleted. With `strong_hash`, files and directories that were moved or renamed in `src` are renamed in `dst` instead of being copied again.

	Args
		src (str or PathLike)   : The directory to copy from, or the single file to copy in file mode.
		dst (str or PathLike)   : The directory to copy to. It is created if it does not exist.

		mode (Mode or str)      : `Mode.DIRECTORY` ("dir") syncs trees; `Mode.FILE` ("file") syncs `src` to `dst / src.name`. Move detection and mirroring only apply to trees. (Defaults to "dir".)
		ignore (list of paths)  : Source paths to leave alone. Nothing at or below them is copied, and their counterparts in `dst` are never overwritten, renamed or deleted. (Defaults to none.)
		mirror (bool)           : Whether to delete entries of `dst` that are not in `src`. (Defaults to `False`.)
		dry_run (bool)          : Whether to only print what would change. (Defaults to `False`.)
		strong_hash (bool)      : Whether to compare files by SHA-256 and detect moves. Otherwise an existing file is refreshed when the source copy is newer. (Defaults to `False`.)
		workers (int)           : Number of copy threads. (Defaults to the number of CPUs, at most 32.)

		verbose (bool)          : Whether to print ignored entries too. Dry runs always do. (Defaults to `False`.)
		color (bool)            : Whether to color console output. (Defaults to `False`.)
		log_file (str or PathLike) : A file to append the log to. (Defaults to `None`.)
		debug (bool)            : Whether to print debug messages. (Defaults to `False`.)
		quiet (bool)            : Whether to forgo printing to stdout.
		very_quiet (bool)       : Whether to forgo printing to stdout and stderr.

	Example Console Output
		   path/to/src
		-> path/to/dst
		--------------
		R old-name.txt -> new-name.txt
		R old-dir/ -> new-dir/
		D+ empty-dir-in-src/
		+ not-in-dst.txt
		U updated.txt
		- not-in-src.txt

		*** syncevery finished successfully. ***

		  Copy Success: 2
		 Mkdir Success: 1
		Rename Success: 2
		Delete Success: 1
		    Net Change: +12 KB
		       Elapsed: 0.04 seconds

	Returns
		A `Results` object. `sync()` does not raise; check `results.exit_code`.
	'''

	results = Results()

	if logger.handlers:
		for handler in list(logger.handlers):
			logger.removeHandler(handler)

	handler_stdout = None
	handler_stderr = None
	handler_file   = None

	if very_quiet:
		quiet = True

	if not quiet:
		handler_stdout = logging.StreamHandler(sys.stdout)
		handler_stdout.setFormatter(_ConsoleFormatter(color=color, dry_run=dry_run))
		handler_stdout.addFilter(_ConsoleFilter())
		if debug:
			handler_stdout.setLevel(logging.DEBUG)
		elif verbose or dry_run:
			handler_stdout.setLevel(logging.INFO)
		else:
			handler_stdout.setLevel(CHANGE)
		logger.addHandler(handler_stdout)

	if not very_quiet:
		handler_stderr = logging.StreamHandler(sys.stderr)
		handler_stderr.setFormatter(_ConsoleFormatter(color=color))
		handler_stderr.setLevel(logging.WARNING)
		logger.addHandler(handler_stderr)

	start = time.perf_counter()
	try:
		if log_file is not None:
			handler_file = logging.FileHandler(log_file, mode="a", encoding="utf-8")
			handler_file.setFormatter(_LogFileFormatter())
			handler_file.setLevel(logging.DEBUG if debug else logging.INFO)
			logger.addHandler(handler_file)

		request = SyncRequest.create(
			mode,
			src,
			dst,
			ignore      = ignore,
			mirror      = mirror,
			dry_run     = dry_run,
			strong_hash = strong_hash,
		)
		results.request = request

		logger.debug(f"Starting sync: {request=} {workers=} {log_file=}")

		width = max(len(str(request.source)), len(str(request.destination))) + 3
		logger.log(CHANGE, "   " + str(request.source))
		logger.log(CHANGE, "-> " + str(request.destination))
		logger.log(CHANGE, "-" * width)

		execute(plan(request), workers=workers, results=results)

		logger.log(CHANGE, "")
		if dry_run and results.planned == 0:
			logger.log(CHANGE, "*** Source and destination are already in sync. No changes needed. ***")
		else:
			logger.log(CHANGE, "*** syncevery finished successfully. ***")

	except KeyboardInterrupt as e:
		results.error = e
		logger.critical("Cancelled by user.")
	except (TypeError, PreconditionError) as e:
		results.error = e
		logger.critical(f"Input Error: {e}")
	except Exception as e:
		results.error = e
		logger.critical("Unexpected error: " + _error_summary(e))
		logger.critical(traceback.format_exc())

	finally:
		results.elapsed = time.perf_counter() - start

		logger.log(CHANGE, "")
		if dry_run:
			logger.log(CHANGE, "*** DRY RUN ***")
		for line in results.summary():
			logger.log(CHANGE, line)

		if results.errors:
			logger.log(CHANGE, "")
			logger.log(CHANGE, f"There were {len(results.errors)} errors.")
			if len(results.errors) <= 10:
				logger.log(CHANGE, "Errors are reprinted below for convenience.")
				for error in results.errors:
					logger.log(CHANGE, error)

		if log_file is not None:
			logger.log(CHANGE, "")
			logger.log(CHANGE, f"Log file: {log_file}")

		if handler_stdout:
			logger.removeHandler(handler_stdout)

		if handler_stderr:
			logger.removeHandler(handler_stderr)

		if handler_file:
			logger.removeHandler(handler_file)
			handler_file.close()

	return results
