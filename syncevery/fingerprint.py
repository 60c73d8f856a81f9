# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import os
import hashlib

from .errors import FingerprintError
from .log import logger, _error_summary

_CHUNK_SIZE  = 64 * 1024  # SHA-256 read size
_WINDOW_SIZE = 128 * 1024 # FNV-1a reads at most one window from each end

_FNV_OFFSET = 0xcbf29ce484222325
_FNV_PRIME  = 0x100000001b3
_MASK_64    = 0xffffffffffffffff

EMPTY = ""

def fnv1a_64(data:bytes, h:int = _FNV_OFFSET) -> int:
	'''
	64-bit FNV-1a hash of `data`.

	>>> f"{fnv1a_64(b''):016x}"
	'cbf29ce484222325'
	>>> f"{fnv1a_64(b'a'):016x}"
	'af63dc4c8601ec8c'
	'''

	for byte in data:
		h ^= byte
		h = (h * _FNV_PRIME) & _MASK_64
	return h

def strong_fingerprint(path:str | os.PathLike[str]) -> str:
	'''SHA-256 over the whole file, streamed. Zero-length files have no fingerprint.'''

	hasher = hashlib.sha256()
	size = 0
	try:
		with open(path, "rb") as f:
			while True:
				buf = f.read(_CHUNK_SIZE)
				if not buf:
					break
				hasher.update(buf)
				size += len(buf)
	except OSError as e:
		raise FingerprintError(f"Cannot compute SHA-256: {path}") from e
	if size == 0:
		return EMPTY
	return hasher.hexdigest()

def weak_fingerprint(path:str | os.PathLike[str]) -> str:
	'''
	FNV-1a over the whole file if it is at most two windows long, otherwise over the first and last window. Zero-length files have no fingerprint.
	'''

	try:
		with open(path, "rb") as f:
			size = os.fstat(f.fileno()).st_size
			if size == 0:
				return EMPTY
			if size <= 2 * _WINDOW_SIZE:
				data = f.read(size)
			else:
				data = f.read(_WINDOW_SIZE)
				f.seek(size - _WINDOW_SIZE)
				data += f.read(_WINDOW_SIZE)
	except OSError as e:
		raise FingerprintError(f"Cannot compute FNV-1a: {path}") from e
	return f"{fnv1a_64(data):016x}"

class Fingerprinter:
	'''
	Produces file fingerprints for one run. With `strong=True` SHA-256 is tried first and FNV-1a is used for files it fails on; the two digests differ in length, so a fallback fingerprint never equals a strong one. An empty string means the file cannot be compared.
	'''

	def __init__(self, *, strong:bool):
		self.strong = strong

	def __call__(self, path:str | os.PathLike[str]) -> str:
		if self.strong:
			try:
				return strong_fingerprint(path)
			except FingerprintError as e:
				logger.debug(f"Falling back to FNV-1a. {_error_summary(e)}")
		try:
			return weak_fingerprint(path)
		except FingerprintError as e:
			logger.error(_error_summary(e))
			return EMPTY
