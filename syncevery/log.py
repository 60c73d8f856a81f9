# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import logging

logger = logging.getLogger("syncevery")
logger.setLevel(logging.DEBUG)

CHANGE = 25
logging.addLevelName(CHANGE, "CHANGE")

_RESET  = "\033[0m"
_BLUE   = "\033[34m"
_GREEN  = "\033[1;32m"
_YELLOW = "\033[1;33m"
_RED    = "\033[1;31m"

class _ConsoleFilter(logging.Filter):
	'''Logging filter that only allows records below WARNING to pass (those go to stderr).'''

	def filter(self, record):
		return record.levelno < logging.WARNING

class _ConsoleFormatter(logging.Formatter):
	'''Prints the bare message, optionally colored by level.'''

	def __init__(self, *, color:bool = False, dry_run:bool = False):
		super().__init__("%(message)s")
		self.color   = color
		self.dry_run = dry_run

	def format(self, record):
		msg = super().format(record)
		if not self.color or not msg:
			return msg
		if record.levelno >= logging.ERROR:
			code = _RED
		elif record.levelno >= logging.WARNING:
			code = _YELLOW
		elif record.levelno >= CHANGE:
			code = _YELLOW if self.dry_run else _GREEN
		elif record.levelno >= logging.INFO:
			code = _BLUE
		else:
			return msg
		return f"{code}{msg}{_RESET}"

class _LogFileFormatter(logging.Formatter):
	'''Timestamped lines for the log file.'''

	def __init__(self):
		super().__init__("[%(asctime)s] %(levelname)s: %(message)s")

def _error_summary(e:BaseException) -> str:
	'''Get a one-line summary of an Error.'''

	error_type = type(e).__name__
	if isinstance(e, OSError):
		affected_file = getattr(e, "filename", None) or "N/A"
		reason = e.strerror or str(e)
		return f"{error_type}: {reason}: {affected_file}"
	cause = e.__cause__
	if cause is not None:
		return f"{error_type}: {e} ({_error_summary(cause)})"
	return f"{error_type}: {e}"

def _human_readable_size(n:int) -> str:
	'''
	Translates `n` bytes into a human-readable size.

	>>> _human_readable_size(1023)
	'+1023 bytes'
	>>> _human_readable_size(-1024)
	'-1 KB'
	>>> _human_readable_size(2.1 * 1024 * 1024)
	'+2 MB'
	'''

	sign = "-" if n < 0 else "+"
	n = abs(n)
	units = ["bytes", "KB", "MB", "GB", "TB", "PB"]
	i = 0
	while n >= 1024 and i < len(units) - 1:
		n //= 1024
		i += 1
	return f"{sign}{round(n)} {units[i]}"
