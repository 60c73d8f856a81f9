# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

from .config import Mode, SyncRequest, load_settings, save_settings
from .core import Plan, plan, execute, run, sync
from .errors import SyncError, PreconditionError, TraversalError, FingerprintError, RenameError, CopyError, DeleteError
from .operations import Action, CreateDir, CopyFile, RenameFile, RenameDir, DeletePath, SkipIgnored, Noop
from .results import Results
