# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

class SyncError(Exception):
	'''Base class for errors raised by a sync run.'''

class PreconditionError(SyncError, ValueError):
	'''The request cannot be run at all (missing source, wrong mode, overlapping roots).'''

class TraversalError(SyncError):
	'''A directory could not be listed. Its subtree is treated as empty.'''

class FingerprintError(SyncError):
	'''A file could not be fingerprinted.'''

class RenameError(SyncError):
	'''A rename failed and could not be recovered by copy-then-delete.'''

class CopyError(SyncError):
	'''A file copy failed.'''

class DeleteError(SyncError):
	'''A destination entry could not be removed.'''
