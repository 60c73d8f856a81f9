# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

from collections import Counter, namedtuple
from typing import Iterator, Counter as CounterType

from .config import SyncRequest
from .operations import Action, CreateDir, CopyFile, RenameFile, RenameDir, DeletePath
from .log import _error_summary, _human_readable_size

class Results:
	'''Various statistics and other information returned by a sync run.'''

	Counts = namedtuple("Counts", ["success", "failure"])

	def __init__(self, request:SyncRequest | None = None):
		self.request        : SyncRequest | None = request
		self.success        : bool = False # the run got to the end
		self.error          : BaseException | None = None # what stopped the run, if anything did
		self.errors         : list[str] = []
		self.first_error    : BaseException | None = None
		self.success_counts : CounterType[type[Action]] = Counter()
		self.failure_counts : CounterType[type[Action]] = Counter()
		self.planned        : int = 0 # changes logged, carried out or not
		self.ignored        : int = 0
		self.byte_diff      : int = 0
		self.elapsed        : float = 0.0

	def tally_success(self, action:Action, byte_diff:int = 0) -> None:
		self.success_counts[type(action)] += 1
		self.byte_diff += byte_diff

	def tally_failure(self, action:Action, e:BaseException) -> None:
		self.failure_counts[type(action)] += 1
		self.errors.append(_error_summary(e))
		if self.first_error is None:
			self.first_error = e

	def __getitem__(self, key:type[Action]) -> "Results.Counts":
		return Results.Counts(success=self.success_counts[key], failure=self.failure_counts[key])

	@property
	def success_count(self) -> int:
		return sum(self.success_counts.values())

	@property
	def failure_count(self) -> int:
		return sum(self.failure_counts.values())

	@property
	def exit_code(self) -> int:
		return 0 if self.success and not self.failure_count else 1

	def summary(self) -> Iterator[str]:
		dry_run = self.request is not None and self.request.dry_run
		lines = []
		if dry_run:
			lines.append(f"Planned Changes: {self.planned}")
			lines.append(f"Net Change: {_human_readable_size(self.byte_diff)} (Estimated)")
		else:
			keys = {
				"Copy"  : [CopyFile],
				"Mkdir" : [CreateDir],
				"Rename": [RenameFile, RenameDir],
				"Delete": [DeletePath],
			}
			for key, types in keys.items():
				total_success = sum(self[t].success for t in types)
				total_failure = sum(self[t].failure for t in types)
				lines.append(f"{key} Success: {total_success}" + (f" | Failed: {total_failure}" if total_failure else ""))
			lines.append(f"Net Change: {_human_readable_size(self.byte_diff)}")
		if self.ignored:
			lines.append(f"Ignored: {self.ignored}")
		lines.append(f"Elapsed: {self.elapsed:.2f} seconds")
		key_length = max(line.find(":") for line in lines)
		for line in lines:
			yield f"{line:>{len(line) + key_length - line.find(':')}}"
