# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import sys
import argparse

from .config import SETTINGS_FILE, load_settings, save_settings
from .core import sync
from .results import Results

LOG_FILE = "sync.log"

class _ArgParser:
	'''Argument parser for when this package is run from the command line.'''

	parser = argparse.ArgumentParser(
		prog="syncevery",
		description="Make a destination directory reflect a source directory (or a single file): copy new and changed files, rename moved ones in place, and optionally delete what the source no longer has.",
		epilog="Run without arguments to repeat the sync stored with --save-settings.",
	)

	target = parser.add_mutually_exclusive_group()
	target.add_argument("--dir", metavar=("SRC", "DST"), nargs=2, type=str, default=None, help="Sync the directory SRC into the directory DST.")
	target.add_argument("--file", metavar=("SRC", "DST"), nargs=2, type=str, default=None, help="Sync the single file SRC into the directory DST.")

	parser.add_argument("--ignore", metavar="path", action="append", type=str, default=[], help="A SOURCE path to leave alone, together with everything below it. Its counterpart in DST is never overwritten, renamed or deleted. Can be repeated.")
	parser.add_argument("--delete", "--mirror", dest="mirror", action="store_true", default=False, help="Mirror mode: delete entries of DST that are missing from SRC.")
	parser.add_argument("--dry-run", action="store_true", default=False, help="Show the operations without applying them.")
	parser.add_argument("--sha256", action="store_true", default=False, help="Compare files by SHA-256 and rename moved files and directories instead of copying them again. Otherwise files are refreshed when the source copy is newer.")
	parser.add_argument("--workers", metavar="n", type=int, default=None, help="Number of parallel copies. (Defaults to the number of CPUs.)")

	parser.add_argument("--verbose", action="store_true", default=False, help="Also print ignored entries.")
	parser.add_argument("--color", action="store_true", default=False, help="Colored output.")
	parser.add_argument("--save-log", action="store_true", default=False, help=f"Append the log to {LOG_FILE} in the working directory.")
	parser.add_argument("--save-settings", action="store_true", default=False, help="Store these options so that running without arguments repeats them.")
	parser.add_argument("--settings", metavar="path", type=str, default=SETTINGS_FILE, help=f"The settings file used by --save-settings and by runs without arguments. (Defaults to {SETTINGS_FILE}.)")
	parser.add_argument("--debug", action="store_true", default=False, help="Print debug messages.")
	parser.add_argument("-q", action="count", default=0, help="Forgo printing to stdout (-q) and stderr (-qq).")

	@staticmethod
	def parse(args:list[str]) -> argparse.Namespace:
		parsed_args = _ArgParser.parser.parse_args(args)
		parsed_args.quiet      = parsed_args.q >= 1
		parsed_args.very_quiet = parsed_args.q >= 2
		del parsed_args.q
		return parsed_args

def sync_cmd(args:list[str]) -> Results | None:
	'''Run `sync()` with command line arguments. Returns `None` if there was nothing to run.'''

	parsed_args = _ArgParser.parse(args)

	settings = {}
	if parsed_args.dir:
		mode = "dir"
		src, dst = parsed_args.dir
	elif parsed_args.file:
		mode = "file"
		src, dst = parsed_args.file
	else:
		settings = load_settings(parsed_args.settings)
		mode = settings.get("mode")
		src  = settings.get("src")
		dst  = settings.get("dst")
		if not (mode and src and dst):
			_ArgParser.parser.print_help()
			return None
		if not parsed_args.quiet:
			print(f"Using settings from {parsed_args.settings}")

	# flags given on the command line win over stored ones
	mirror      = parsed_args.mirror  or settings.get("mirror", False)
	verbose     = parsed_args.verbose or settings.get("verbose", False)
	strong_hash = parsed_args.sha256  or settings.get("sha256", False)
	ignore      = parsed_args.ignore  or settings.get("ignore", [])

	results = sync(
		src,
		dst,
		mode        = mode,
		ignore      = ignore,
		mirror      = mirror,
		dry_run     = parsed_args.dry_run,
		strong_hash = strong_hash,
		workers     = parsed_args.workers,
		verbose     = verbose,
		color       = parsed_args.color,
		log_file    = LOG_FILE if parsed_args.save_log else None,
		debug       = parsed_args.debug,
		quiet       = parsed_args.quiet,
		very_quiet  = parsed_args.very_quiet,
	)

	if parsed_args.save_settings and results.request is not None:
		save_settings(results.request, verbose=verbose, path=parsed_args.settings)
		if not parsed_args.quiet:
			print(f"Settings saved to {parsed_args.settings}")

	return results

def main() -> None:
	results = sync_cmd(sys.argv[1:])
	sys.exit(0 if results is None else results.exit_code)
