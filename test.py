import io
import os
import time
import errno
import contextlib
import hashlib
import tempfile
import unittest
import doctest
from pathlib import Path
from unittest import mock

import syncevery.log
import syncevery.paths
import syncevery.fingerprint
from syncevery import (
	Mode, SyncRequest, Results, plan, run, sync,
	CreateDir, CopyFile, RenameFile, RenameDir, DeletePath, SkipIgnored,
	PreconditionError, FingerprintError, CopyError, RenameError,
	load_settings, save_settings,
)
from syncevery.cli import sync_cmd
from syncevery.fingerprint import Fingerprinter, fnv1a_64, strong_fingerprint, weak_fingerprint, _WINDOW_SIZE
from syncevery.index import DestinationIndex, DirFingerprintCache
from syncevery.paths import IgnoreMatcher, normalize, is_same_or_child, src_equivalent, staging_path, walk
from syncevery.planner import Reservations, MOVE_RATIO

def hash_directory(root:Path, *, follow_links:bool=False, ignore_empty_dirs:bool=False, verbose:bool=False):
	if verbose:
		print("--- Hash Start ---")
	hasher = hashlib.sha256()
	for dir, dirnames, filenames in os.walk(root, followlinks=follow_links):
		if ignore_empty_dirs and not filenames:
			continue
		dirnames.sort(key=lambda x: (os.path.normcase(x), x))
		filenames.sort(key=lambda x: (os.path.normcase(x), x))
		dir_relpath = os.path.normcase(os.path.relpath(dir, root))
		hasher.update(dir_relpath.encode())
		if verbose:
			print(dir_relpath)
		for file in filenames:
			file_path = os.path.join(dir, file)
			file_relpath = os.path.normcase(os.path.relpath(file_path, root))
			hasher.update(file_relpath.encode())
			if verbose:
				print(file_relpath)
			try:
				with open(file_path, "rb") as f:
					while True:
						buf = f.read(4096)
						if not buf:
							break
						hasher.update(buf)
						if verbose:
							print(buf)
			except OSError as e:
				print(f"Error hashing {file_path}: {e}")
	if verbose:
		print("--- Hash End ---")
	return hasher.hexdigest()

def create_file_structure(root_dir:Path, structure:dict):
	'''Recursively creates a directory structure with files.'''
	root_dir.mkdir(parents=True, exist_ok=True)
	for name, content in structure.items():
		file_path = root_dir / name
		if isinstance(content, Path):
			# create symlink
			os.symlink(content, file_path)
		elif isinstance(content, dict):
			# create dir
			create_file_structure(file_path, content)
		elif isinstance(content, (tuple, list)):
			# Create file with modtime and content
			file_path.write_text(content[0] or "")
			mtime = float(content[1])
			os.utime(file_path, (mtime, mtime))
		elif content is None:
			# Create an empty file
			file_path.touch()
		elif isinstance(content, bytes):
			file_path.write_bytes(content)
		else:
			# Create a file with content
			file_path.write_text(content)

def numbered_files(count:int, *, start:int = 0) -> dict:
	return {f"f{i:02}.txt": f"content of file {i}" for i in range(start, start + count)}

def quiet_sync(src, dst, **kwargs) -> Results:
	return sync(src, dst, quiet=True, very_quiet=True, **kwargs)

def planned_actions(src, dst, **kwargs) -> list:
	'''The actions a dry run would log, without touching either tree.'''
	request = SyncRequest.create(kwargs.pop("mode", Mode.DIRECTORY), src, dst, dry_run=True, **kwargs)
	return list(plan(request))

def changes(actions) -> list:
	return [a for a in actions if a.is_change]

def load_tests(loader, tests, ignore):
	tests.addTests(doctest.DocTestSuite(syncevery.paths))
	tests.addTests(doctest.DocTestSuite(syncevery.fingerprint))
	tests.addTests(doctest.DocTestSuite(syncevery.log))
	return tests

class TestPaths(unittest.TestCase):
	def test_normalize(self):
		self.assertEqual(normalize("/a/b/"), normalize("/a/b"))
		self.assertEqual(normalize("/a/b//"), "/a/b")
		self.assertEqual(normalize("/a/./b/../c"), "/a/c")
		self.assertEqual(normalize("/"), "/")

	def test_is_same_or_child(self):
		self.assertTrue(is_same_or_child(normalize("/a/b/"), normalize("/a/b")))
		self.assertTrue(is_same_or_child(normalize("/a/b/"), normalize("/a/b/c/d")))
		self.assertFalse(is_same_or_child(normalize("/a/b"), normalize("/a/bc")))
		self.assertFalse(is_same_or_child(normalize("/a/b/c"), normalize("/a/b")))
		self.assertTrue(is_same_or_child(normalize("/"), normalize("/a/b")))
		self.assertTrue(is_same_or_child(normalize("/"), normalize("/")))

	def test_src_equivalent(self):
		src = Path("/s")
		dst = Path("/d")
		self.assertEqual(src_equivalent(Path("/d/x/y"), dst_root=dst, src_root=src), Path("/s/x/y"))
		self.assertEqual(src_equivalent(Path("/d"), dst_root=dst, src_root=src), src)
		self.assertIsNone(src_equivalent(Path("/elsewhere/x"), dst_root=dst, src_root=src))

	def test_ignore_matcher(self):
		m = IgnoreMatcher(["/s/secret", "/s/logs/"], src_root=Path("/s"), dst_root=Path("/d"))
		self.assertTrue(m)
		self.assertTrue(m.matches("/s/secret"))
		self.assertTrue(m.matches("/s/secret/a/b"))
		self.assertTrue(m.matches("/s/logs"))
		self.assertFalse(m.matches("/s/secretive"))
		self.assertFalse(m.matches("/s/other"))
		self.assertTrue(m.matches_dst("/d/secret/x"))
		self.assertTrue(m.matches_dst("/d/logs/"))
		self.assertFalse(m.matches_dst("/d/secretive"))
		self.assertFalse(m.matches_dst("/elsewhere/secret"))

		self.assertTrue(m.covers_below("/s"))
		self.assertTrue(m.covers_below("/s/secret/../"))
		self.assertFalse(m.covers_below("/s/secret"))
		self.assertFalse(m.covers_below("/s/secret/a"))
		self.assertFalse(m.covers_below("/s/other"))

		m = IgnoreMatcher([], src_root=Path("/s"), dst_root=Path("/d"))
		self.assertFalse(m)
		self.assertFalse(m.matches("/s/anything"))
		self.assertFalse(m.covers_below("/s"))

		m = IgnoreMatcher(["/"], src_root=Path("/s"), dst_root=Path("/d"))
		self.assertTrue(m.matches("/s/anything"))
		self.assertTrue(m.matches_dst("/d/anything"))

	def test_staging_path(self):
		self.assertEqual(staging_path(Path("/d/a/b.txt")), Path("/d/a/.b.txt.syncevery-tmp"))

	#~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

	def test_walk(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			create_file_structure(test_root, {
				"b": {
					"b2.txt": None,
					"b1.txt": None,
				},
				"a.txt": None,
				"c": {
					"skip": {
						"hidden.txt": None,
					},
					"c1.txt": None,
				},
				"link": test_root / "b",
			})
			entries = [
				os.path.relpath(entry.path, test_root).replace(os.sep, "/")
				for entry in walk(test_root, skip=lambda entry: entry.name == "skip")
			]
			self.assertEqual(entries, [
				"a.txt",
				"b",
				"b/b1.txt",
				"b/b2.txt",
				"c",
				"c/c1.txt",
				"link",
			])

class TestFingerprint(unittest.TestCase):
	def test_fnv1a(self):
		self.assertEqual(f"{fnv1a_64(b'foobar'):016x}", "85944171f73967e8")
		# chaining continues the same hash
		self.assertEqual(fnv1a_64(b"bar", fnv1a_64(b"foo")), fnv1a_64(b"foobar"))

	def test_fingerprints(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			create_file_structure(test_root, {
				"a.txt": "a",
				"abc.txt": "abc",
				"empty.txt": None,
			})
			self.assertEqual(weak_fingerprint(test_root / "a.txt"), "af63dc4c8601ec8c")
			self.assertEqual(strong_fingerprint(test_root / "abc.txt"), hashlib.sha256(b"abc").hexdigest())
			self.assertEqual(weak_fingerprint(test_root / "empty.txt"), "")
			self.assertEqual(strong_fingerprint(test_root / "empty.txt"), "")

			with self.assertRaises(FingerprintError):
				strong_fingerprint(test_root / "missing.txt")
			with self.assertRaises(FingerprintError):
				weak_fingerprint(test_root / "missing.txt")

	def test_weak_window(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)

			# longer than two windows: the middle is not read
			size = 2 * _WINDOW_SIZE + 10
			data = bytearray(b"x" * size)
			(test_root / "a.bin").write_bytes(bytes(data))
			data[_WINDOW_SIZE + 5] = ord("y")
			(test_root / "b.bin").write_bytes(bytes(data))
			self.assertEqual(weak_fingerprint(test_root / "a.bin"), weak_fingerprint(test_root / "b.bin"))
			self.assertNotEqual(strong_fingerprint(test_root / "a.bin"), strong_fingerprint(test_root / "b.bin"))

			# a change in the last window is seen
			data[-1] = ord("z")
			(test_root / "c.bin").write_bytes(bytes(data))
			self.assertNotEqual(weak_fingerprint(test_root / "a.bin"), weak_fingerprint(test_root / "c.bin"))

			# exactly two windows: the whole file is read
			size = 2 * _WINDOW_SIZE
			data = bytearray(b"x" * size)
			(test_root / "d.bin").write_bytes(bytes(data))
			data[_WINDOW_SIZE] = ord("y")
			(test_root / "e.bin").write_bytes(bytes(data))
			self.assertNotEqual(weak_fingerprint(test_root / "d.bin"), weak_fingerprint(test_root / "e.bin"))
			self.assertEqual(weak_fingerprint(test_root / "d.bin"), f"{fnv1a_64(b'x' * size):016x}")

	def test_fallback(self):
		with tempfile.TemporaryDirectory() as temp_root:
			path = Path(temp_root) / "a.txt"
			path.write_text("hello")

			fingerprint = Fingerprinter(strong=True)
			self.assertEqual(fingerprint(path), hashlib.sha256(b"hello").hexdigest())

			with mock.patch("syncevery.fingerprint.strong_fingerprint", side_effect=FingerprintError("unreadable")):
				fp = fingerprint(path)
			self.assertEqual(fp, weak_fingerprint(path))
			self.assertEqual(len(fp), 16)

			self.assertEqual(Fingerprinter(strong=False)(path), weak_fingerprint(path))
			self.assertEqual(fingerprint(Path(temp_root) / "missing.txt"), "")

class TestIndex(unittest.TestCase):
	def test_destination_index(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {})
			create_file_structure(dst, {
				"a.txt": "one",
				"b": {
					"c.txt": "one",
				},
				"d.txt": "two",
				"empty.txt": None,
				"secret": {
					"e.txt": "three",
				},
			})
			fingerprint = Fingerprinter(strong=True)
			ignore = IgnoreMatcher([src / "secret"], src_root=src, dst_root=dst)
			index = DestinationIndex.build(dst, fingerprint=fingerprint, ignore=ignore)

			fp_one = fingerprint(dst / "a.txt")
			fp_two = fingerprint(dst / "d.txt")
			self.assertEqual(len(index), 3)
			self.assertEqual(index.candidates(fp_one), [dst / "a.txt", dst / "b" / "c.txt"])
			self.assertNotIn(fingerprint(dst / "secret" / "e.txt"), index)
			self.assertEqual(index.candidates("nothing"), [])

			self.assertEqual(index.remove_under(dst / "b"), 1)
			self.assertEqual(index.candidates(fp_one), [dst / "a.txt"])
			index.remove(fp_one, dst / "a.txt")
			self.assertNotIn(fp_one, index)
			self.assertEqual(list(index), [(fp_two, dst / "d.txt")])

	def test_dir_fingerprint_cache(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			create_file_structure(test_root, {
				"a.txt": "one",
				"sub": {
					"b.txt": "two",
					"c.txt": "one",
					"skip.txt": "three",
				},
				"empty.txt": None,
			})
			fingerprint = Fingerprinter(strong=True)
			cache = DirFingerprintCache(fingerprint)
			fps = cache.get(test_root, is_ignored=lambda path: path.endswith("skip.txt"))
			self.assertEqual(fps, {fingerprint(test_root / "a.txt"), fingerprint(test_root / "sub" / "b.txt")})

			# memoized
			(test_root / "new.txt").write_text("four")
			self.assertIs(cache.get(str(test_root) + os.sep, is_ignored=lambda path: False), fps)

			cache.discard_containing(test_root / "sub" / "b.txt")
			fps = cache.get(test_root, is_ignored=lambda path: False)
			self.assertIn(fingerprint(test_root / "new.txt"), fps)
			self.assertIn(fingerprint(test_root / "sub" / "skip.txt"), fps)

	def test_dir_fingerprint_cache_reuses_files(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			create_file_structure(test_root, {
				"a": {
					"b": {
						"c": numbered_files(3),
					},
				},
			})
			hashed = []
			fingerprinter = Fingerprinter(strong=True)
			def fingerprint(path):
				hashed.append(path)
				return fingerprinter(path)

			cache = DirFingerprintCache(fingerprint)
			for dir in (test_root, test_root / "a", test_root / "a" / "b", test_root / "a" / "b" / "c"):
				self.assertEqual(len(cache.get(dir, is_ignored=lambda path: False)), 3)
			self.assertEqual(len(hashed), 3)

			# a discarded file is fingerprinted again
			cache.discard_containing(test_root / "a" / "b" / "c" / "f00.txt")
			cache.get(test_root, is_ignored=lambda path: False)
			self.assertEqual(len(hashed), 4)

	def test_reservations(self):
		reserved = Reservations()
		reserved.reserve(Path("/d/a.txt"))
		reserved.reserve_dir(Path("/d/moved/"))
		reserved.release(Path("/d/moved/extra"), Path("/d/old/extra"))
		self.assertIn(Path("/d/a.txt/"), reserved)
		self.assertIn(Path("/d/moved"), reserved)
		self.assertIn(Path("/d/moved/kept.txt"), reserved)
		self.assertNotIn(Path("/d/moved/extra"), reserved)
		self.assertNotIn(Path("/d/moved/extra/deep.txt"), reserved)
		self.assertNotIn(Path("/d/movedx"), reserved)
		self.assertNotIn(Path("/d/b.txt"), reserved)

class TestPlanner(unittest.TestCase):
	def test_file_rename(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"new": {
					"x.bin": b"\x00\x01binary payload\xff",
				},
			})
			create_file_structure(dst, {
				"new": {},
				"old": {
					"x.bin": b"\x00\x01binary payload\xff",
				},
			})

			request = SyncRequest.create(Mode.DIRECTORY, src, dst, strong_hash=True, dry_run=True)
			p = plan(request)
			actions = changes(p)
			self.assertEqual(actions, [RenameFile(dst / "old" / "x.bin", dst / "new" / "x.bin")])
			self.assertFalse(p.planner.index)

			results = quiet_sync(src, dst, strong_hash=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results[RenameFile].success, 1)
			self.assertEqual(results[CopyFile].success, 0)
			self.assertEqual((dst / "new" / "x.bin").read_bytes(), b"\x00\x01binary payload\xff")
			self.assertFalse((dst / "old" / "x.bin").exists())

	def test_dir_rename_takes_precedence(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"new": {
					"x.bin": "payload",
				},
			})
			create_file_structure(dst, {
				"old": {
					"x.bin": "payload",
				},
			})
			actions = changes(planned_actions(src, dst, strong_hash=True))
			self.assertEqual(actions, [RenameDir(dst / "old", dst / "new")])

	def test_weak_hash_never_renames(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"new": numbered_files(3),
			})
			create_file_structure(dst, {
				"old": numbered_files(3),
			})
			actions = changes(planned_actions(src, dst, mirror=True))
			self.assertFalse([a for a in actions if isinstance(a, (RenameFile, RenameDir))])
			self.assertEqual(sum(isinstance(a, CopyFile) for a in actions), 3)
			self.assertIn(DeletePath(dst / "old"), actions)

	#~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

	def test_dir_rename(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"proj": numbered_files(10),
			})
			create_file_structure(dst, {
				"project": {
					**numbered_files(10),
					"extra": "not in the source",
				},
			})

			actions = changes(planned_actions(src, dst, strong_hash=True))
			self.assertEqual(actions, [RenameDir(dst / "project", dst / "proj")])

			actions = changes(planned_actions(src, dst, strong_hash=True, mirror=True))
			self.assertEqual(actions, [
				RenameDir(dst / "project", dst / "proj"),
				DeletePath(dst / "proj" / "extra"),
			])

			# without mirroring the extra file travels along and stays
			results = quiet_sync(src, dst, strong_hash=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results[RenameDir].success, 1)
			self.assertEqual(results[CopyFile].success, 0)
			self.assertFalse((dst / "project").exists())
			self.assertTrue((dst / "proj" / "extra").exists())

	def test_dir_rename_mirror(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"proj": {
					**numbered_files(10),
					"sub": {
						"new.txt": "added since",
					},
				},
			})
			create_file_structure(dst, {
				"project": {
					**numbered_files(10),
					"extra": {
						"deep.txt": "not in the source",
					},
					"sub": {
						"gone.txt": "removed since",
					},
				},
			})

			dry_actions = changes(planned_actions(src, dst, strong_hash=True, mirror=True))
			results = quiet_sync(src, dst, strong_hash=True, mirror=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results[RenameDir].success, 1)
			self.assertEqual(results[CopyFile].success, 1)
			self.assertEqual(results[DeletePath].success, 3)
			self.assertEqual(results.planned, len(dry_actions))
			self.assertEqual(hash_directory(src), hash_directory(dst))

	def test_ratio_boundary(self):
		self.assertEqual(MOVE_RATIO, 0.85)
		for shared, expect_move in ((17, True), (16, False)):
			with self.subTest(shared=shared), tempfile.TemporaryDirectory() as temp_root:
				test_root = Path(temp_root)
				src = test_root / "src"
				dst = test_root / "dst"
				create_file_structure(src, {
					"proj": numbered_files(20),
				})
				create_file_structure(dst, {
					"other": {
						**numbered_files(shared),
						"unrelated.txt": "only here",
					},
				})
				actions = changes(planned_actions(src, dst, strong_hash=True))
				moved = RenameDir(dst / "other", dst / "proj") in actions
				self.assertEqual(moved, expect_move)
				self.assertEqual(CreateDir(dst / "proj") in actions, not expect_move)

	def test_type_conflicts(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"x": {
					"inner.txt": "inner",
				},
				"y": "now a file",
			})
			create_file_structure(dst, {
				"x": "was a file",
				"y": {
					"inner.txt": "was a dir",
				},
			})
			results = quiet_sync(src, dst)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(hash_directory(src), hash_directory(dst))
			self.assertEqual(results[DeletePath].success, 2)

	def test_file_over_dir_with_ignored_entries(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"y": "now a file"})
			create_file_structure(dst, {
				"y": {
					"secret.log": "do not touch",
					"other.txt": "other",
				},
			})
			ignore = [src / "y" / "secret.log"]

			with self.assertLogs("syncevery", "WARNING"):
				actions = changes(planned_actions(src, dst, ignore=ignore, mirror=True))
			self.assertEqual(actions, [DeletePath(dst / "y" / "other.txt")])

			results = quiet_sync(src, dst, ignore=ignore, mirror=True)
			self.assertEqual(results.planned, len(actions))
			self.assertTrue((dst / "y").is_dir())
			self.assertEqual((dst / "y" / "secret.log").read_text(), "do not touch")
			self.assertFalse((dst / "y" / "other.txt").exists())

	def test_moved_dir_keeps_ignored_entries(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"proj": {
					**numbered_files(10),
					"y": "now a file",
				},
			})
			create_file_structure(dst, {
				"project": {
					**numbered_files(10),
					"y": {
						"secret.log": "do not touch",
					},
				},
			})
			results = quiet_sync(src, dst, ignore=[src / "proj" / "y" / "secret.log"], strong_hash=True, mirror=True)
			self.assertEqual(results[RenameDir].success, 1)
			self.assertEqual(results[DeletePath].success, 0)
			self.assertEqual((dst / "proj" / "y" / "secret.log").read_text(), "do not touch")

	def test_type_conflict_dry_run(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"y": "now a file"})
			create_file_structure(dst, {
				"y": {
					"inner.txt": "was a dir",
				},
			})
			actions = changes(planned_actions(src, dst, mirror=True))
			self.assertEqual(actions, [
				DeletePath(dst / "y"),
				CopyFile(src / "y", dst / "y"),
			])

			results = quiet_sync(src, dst, mirror=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results.planned, len(actions))
			self.assertEqual(hash_directory(src), hash_directory(dst))

	def test_new_tree_is_not_fingerprinted(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"a": {
					"b": {
						"c": numbered_files(3),
					},
					**numbered_files(2),
				},
			})
			create_file_structure(dst, {})
			with mock.patch("syncevery.fingerprint.strong_fingerprint", wraps=strong_fingerprint) as fingerprint:
				actions = changes(planned_actions(src, dst, strong_hash=True))
			self.assertEqual(fingerprint.call_count, 0)
			self.assertEqual(sum(isinstance(a, CopyFile) for a in actions), 5)

	def test_plan_consumed_once(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			create_file_structure(test_root / "src", {"a.txt": "a"})
			p = plan(SyncRequest.create("dir", test_root / "src", test_root / "dst", dry_run=True))
			list(p)
			with self.assertRaises(RuntimeError):
				list(p)

class TestSync(unittest.TestCase):
	def test_new_file(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"a.txt": "hello"})
			create_file_structure(dst, {})
			results = quiet_sync(src, dst)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results[CopyFile].success, 1)
			self.assertEqual(results.success_count, 1)
			self.assertEqual((dst / "a.txt").read_text(), "hello")
			self.assertEqual(os.listdir(dst), ["a.txt"])

	def test_missing_destination(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "out" / "dst"
			create_file_structure(src, {
				"a": {
					"b": {
						"c.txt": "c",
					},
					"empty": {},
				},
			})
			results = quiet_sync(src, dst)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results[CreateDir].success, 4)
			self.assertEqual(hash_directory(src), hash_directory(dst))

	def test_mtime_refresh(self):
		t = int(time.time()) - 1000
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"

			# weak: newer source wins
			create_file_structure(src, {"a.txt": ("v2", t + 10)})
			create_file_structure(dst, {"a.txt": ("v1", t)})
			results = quiet_sync(src, dst)
			self.assertEqual(results[CopyFile].success, 1)
			self.assertEqual((dst / "a.txt").read_text(), "v2")

			# weak: older source is left alone
			create_file_structure(src, {"a.txt": ("v3", t)})
			create_file_structure(dst, {"a.txt": ("v1", t + 10)})
			results = quiet_sync(src, dst)
			self.assertEqual(results[CopyFile].success, 0)
			self.assertEqual((dst / "a.txt").read_text(), "v1")

			# strong: same size, different content
			create_file_structure(src, {"a.txt": ("v2", t)})
			create_file_structure(dst, {"a.txt": ("v1", t + 10)})
			results = quiet_sync(src, dst, strong_hash=True)
			self.assertEqual(results[CopyFile].success, 1)
			self.assertEqual((dst / "a.txt").read_text(), "v2")

			# strong: same content, different mtime
			create_file_structure(src, {"a.txt": ("same", t + 10)})
			create_file_structure(dst, {"a.txt": ("same", t)})
			results = quiet_sync(src, dst, strong_hash=True)
			self.assertEqual(results[CopyFile].success, 0)
			self.assertEqual(os.stat(dst / "a.txt").st_mtime, t)

			# strong: both empty
			create_file_structure(src, {"a.txt": ("", t + 10)})
			create_file_structure(dst, {"a.txt": ("", t)})
			results = quiet_sync(src, dst, strong_hash=True)
			self.assertEqual(results[CopyFile].success, 0)

	def test_ignore(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"keep.txt": "keep"})
			create_file_structure(dst, {
				"keep.txt": "keep",
				"secret.log": "do not touch",
			})
			results = quiet_sync(src, dst, ignore=[src / "secret.log"], mirror=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results[DeletePath].success, 0)
			self.assertEqual((dst / "secret.log").read_text(), "do not touch")

	def test_ignore_shields_parent_dirs(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"keep.txt": "keep"})
			create_file_structure(dst, {
				"keep.txt": "keep",
				"z": {
					"deeper": {
						"secret.log": "do not touch",
					},
					"junk.txt": "junk",
				},
			})
			ignore = [src / "z" / "deeper" / "secret.log"]

			actions = changes(planned_actions(src, dst, ignore=ignore, mirror=True))
			self.assertEqual(actions, [DeletePath(dst / "z" / "junk.txt")])

			results = quiet_sync(src, dst, ignore=ignore, mirror=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results.planned, len(actions))
			self.assertEqual((dst / "z" / "deeper" / "secret.log").read_text(), "do not touch")
			self.assertFalse((dst / "z" / "junk.txt").exists())

	def test_ignore_shields_subtree(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"data": {
					"a.txt": "new contents",
					"b.txt": "only in src",
				},
				"other.txt": "other",
			})
			create_file_structure(dst, {
				"data": {
					"a.txt": "old",
					"c.txt": "only in dst",
				},
				"stray.txt": "stray",
			})
			before = hash_directory(dst / "data")

			actions = planned_actions(src, dst, ignore=[src / "data"], mirror=True, strong_hash=True)
			self.assertEqual([a for a in actions if isinstance(a, SkipIgnored)], [SkipIgnored(src / "data")])

			results = quiet_sync(src, dst, ignore=[str(src / "data") + os.sep], mirror=True, strong_hash=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results.ignored, 1)
			self.assertEqual(hash_directory(dst / "data"), before)
			self.assertFalse((dst / "stray.txt").exists())
			self.assertEqual((dst / "other.txt").read_text(), "other")

	def test_mirror(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"a.txt": "a"})
			create_file_structure(dst, {
				"a.txt": "a",
				"old": {
					"sub": {
						"f.txt": "f",
					},
				},
				"z.txt": "z",
			})

			actions = changes(planned_actions(src, dst, mirror=True))
			self.assertEqual([a for a in actions if isinstance(a, DeletePath)], [
				DeletePath(dst / "z.txt"),
				DeletePath(dst / "old" / "sub" / "f.txt"),
				DeletePath(dst / "old" / "sub"),
				DeletePath(dst / "old"),
			])

			results = quiet_sync(src, dst)
			self.assertEqual(results[DeletePath].success, 0)
			self.assertTrue((dst / "z.txt").exists())

			results = quiet_sync(src, dst, mirror=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(results[DeletePath].success, 4)
			self.assertEqual(hash_directory(src), hash_directory(dst))

	#~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

	def test_dry_run(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"proj": numbered_files(10),
				"new.txt": "new",
				"changed.txt": "changed!",
				"dir": {
					"x.txt": "x",
				},
			})
			create_file_structure(dst, {
				"project": {
					**numbered_files(10),
					"extra": "extra",
				},
				"changed.txt": "original",
				"dir": "a file in the way",
				"stray": {
					"s.txt": "s",
				},
			})
			src_before = hash_directory(src)
			dst_before = hash_directory(dst)

			dry = quiet_sync(src, dst, mirror=True, strong_hash=True, dry_run=True)
			self.assertEqual(dry.exit_code, 0)
			self.assertGreater(dry.planned, 0)
			self.assertEqual(dry.success_count, 0)
			self.assertEqual(hash_directory(src), src_before)
			self.assertEqual(hash_directory(dst), dst_before)
			self.assertTrue(any(line.strip().startswith("Planned Changes") for line in dry.summary()))

			wet = quiet_sync(src, dst, mirror=True, strong_hash=True)
			self.assertEqual(wet.exit_code, 0)
			self.assertEqual(wet.planned, dry.planned)
			self.assertEqual(wet.success_count, dry.planned)
			self.assertEqual(hash_directory(src), hash_directory(dst))

	def test_idempotence(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"a": {
					"b": numbered_files(5),
					"empty": {},
				},
				"renamed": numbered_files(4),
				"top.txt": "top",
				"zero.txt": None,
			})
			create_file_structure(dst, {
				"orig": numbered_files(4),
				"top.txt": "stale",
				"stray.txt": "stray",
			})
			for strong_hash in (True, False):
				with self.subTest(strong_hash=strong_hash):
					first = quiet_sync(src, dst, mirror=True, strong_hash=strong_hash)
					self.assertEqual(first.exit_code, 0)
					self.assertEqual(hash_directory(src), hash_directory(dst))

					second = quiet_sync(src, dst, mirror=True, strong_hash=strong_hash)
					self.assertEqual(second.exit_code, 0)
					self.assertEqual(second.planned, 0)
					self.assertEqual(second.success_count, 0)

	def test_cross_volume_rename(self):
		exdev = OSError(errno.EXDEV, os.strerror(errno.EXDEV))
		for dst_has_parent, action_type in ((True, RenameFile), (False, RenameDir)):
			with self.subTest(action=action_type.__name__), tempfile.TemporaryDirectory() as temp_root:
				test_root = Path(temp_root)
				src = test_root / "src"
				dst = test_root / "dst"
				create_file_structure(src, {
					"new": {
						"x": "payload",
					},
				})
				create_file_structure(dst, {
					"old": {
						"x": "payload",
					},
				})
				if dst_has_parent:
					(dst / "new").mkdir()

				with mock.patch("syncevery.executor.os.rename", side_effect=exdev):
					results = quiet_sync(src, dst, strong_hash=True)
				self.assertEqual(results.exit_code, 0)
				self.assertEqual(results[action_type].success, 1)
				self.assertEqual(results[CopyFile].success, 0)
				self.assertEqual((dst / "new" / "x").read_text(), "payload")
				self.assertFalse((dst / "old" / "x").exists())
				if not dst_has_parent:
					self.assertFalse((dst / "old").exists())

	def test_rename_failure(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"new": {"x": "payload"}})
			create_file_structure(dst, {"new": {}, "old": {"x": "payload"}})
			with mock.patch("syncevery.executor.os.rename", side_effect=PermissionError(errno.EACCES, "Permission denied")):
				results = quiet_sync(src, dst, strong_hash=True)
			self.assertEqual(results.exit_code, 1)
			self.assertEqual(results[RenameFile].failure, 1)
			self.assertIsInstance(results.first_error, RenameError)
			self.assertTrue((dst / "old" / "x").exists())

	def test_copy_failure(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"a.txt": "a",
				"b.txt": "b",
			})
			create_file_structure(dst, {})
			with mock.patch("syncevery.executor.shutil.copy2", side_effect=PermissionError(errno.EACCES, "Permission denied")):
				results = quiet_sync(src, dst)
			self.assertTrue(results.success)
			self.assertEqual(results.exit_code, 1)
			self.assertEqual(results[CopyFile], Results.Counts(success=0, failure=2))
			self.assertIsInstance(results.first_error, CopyError)
			self.assertEqual(len(results.errors), 2)
			self.assertEqual(os.listdir(dst), [])

	def test_preconditions(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			create_file_structure(src, {
				"a.txt": "a",
				"inner": {},
			})

			results = quiet_sync(test_root / "missing", test_root / "dst")
			self.assertIsInstance(results.error, PreconditionError)
			self.assertEqual(results.exit_code, 1)

			results = quiet_sync(src, src / "inner")
			self.assertIsInstance(results.error, PreconditionError)

			results = quiet_sync(src, src)
			self.assertIsInstance(results.error, PreconditionError)

			results = quiet_sync(src, test_root / "dst", mode="sideways")
			self.assertIsInstance(results.error, PreconditionError)

			results = quiet_sync(src, test_root / "dst", mirror="yes")
			self.assertIsInstance(results.error, TypeError)

			with self.assertRaises(PreconditionError):
				plan(SyncRequest.create(Mode.FILE, src, test_root / "dst"))
			with self.assertRaises(PreconditionError):
				plan(SyncRequest.create(Mode.FILE, src / "a.txt", src))
			with self.assertRaises(PreconditionError):
				plan(SyncRequest.create(Mode.DIRECTORY, src, src / "a.txt"))
			self.assertFalse((test_root / "dst").exists())

	def test_single_file(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {
				"a.txt": "a",
				"b.txt": "b",
			})
			results = quiet_sync(src / "a.txt", dst, mode=Mode.FILE, mirror=True, strong_hash=True)
			self.assertEqual(results.exit_code, 0)
			self.assertEqual(os.listdir(dst), ["a.txt"])
			self.assertEqual((dst / "a.txt").read_text(), "a")

			results = quiet_sync(src / "a.txt", dst, mode="file")
			self.assertEqual(results.planned, 0)

			(src / "a.txt").write_text("A")
			os.utime(src / "a.txt", (time.time() + 10, time.time() + 10))
			results = quiet_sync(src / "a.txt", dst, mode="file")
			self.assertEqual(results[CopyFile].success, 1)
			self.assertEqual((dst / "a.txt").read_text(), "A")

	def test_run(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"a.txt": "a"})
			results = run(SyncRequest.create(Mode.DIRECTORY, src, dst), workers=2)
			self.assertTrue(results.success)
			self.assertEqual(results[CopyFile].success, 1)
			self.assertEqual(results[CreateDir].success, 1)

	def test_log_file(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			log_file = test_root / "sync.log"
			create_file_structure(src, {"a.txt": "a"})
			create_file_structure(dst, {})
			results = quiet_sync(src, dst, log_file=log_file)
			self.assertEqual(results.exit_code, 0)
			log = log_file.read_text(encoding="utf-8")
			self.assertIn("CHANGE: + a.txt", log)
			self.assertIn("*** syncevery finished successfully. ***", log)
			self.assertIn("Copy Success: 1", log)

	def test_console_output(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			create_file_structure(src, {"a.txt": "a", "skip.txt": "skip"})
			create_file_structure(dst, {})
			stdout = io.StringIO()
			with contextlib.redirect_stdout(stdout):
				results = sync(src, dst, ignore=[src / "skip.txt"], dry_run=True)
			self.assertEqual(results.planned, 1)
			output = stdout.getvalue().splitlines()
			self.assertIn("+ a.txt", output)
			self.assertIn("I skip.txt", output)
			self.assertIn("*** DRY RUN ***", output)
			self.assertFalse((dst / "a.txt").exists())

class TestSettings(unittest.TestCase):
	def test_settings(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			path = test_root / "settings.json"
			self.assertEqual(load_settings(path), {})

			request = SyncRequest.create("dir", test_root / "src", test_root / "dst", ignore=[test_root / "src" / "x"], mirror=True)
			save_settings(request, verbose=True, path=path)
			self.assertEqual(load_settings(path), {
				"mode"    : "dir",
				"src"     : str(test_root / "src"),
				"dst"     : str(test_root / "dst"),
				"mirror"  : True,
				"verbose" : True,
				"sha256"  : False,
				"ignore"  : [str(test_root / "src" / "x")],
			})

			path.write_text('{"mode": "dir", "mirror": "true", "sha256": "false", "ignore": "oops"}')
			settings = load_settings(path)
			self.assertIs(settings["mirror"], True)
			self.assertIs(settings["sha256"], False)
			self.assertEqual(settings["ignore"], [])

			path.write_text("not json")
			self.assertEqual(load_settings(path), {})
			path.write_text("[1, 2]")
			self.assertEqual(load_settings(path), {})

	def test_cli(self):
		with tempfile.TemporaryDirectory() as temp_root:
			test_root = Path(temp_root)
			src = test_root / "src"
			dst = test_root / "dst"
			settings = test_root / "settings.json"
			create_file_structure(src, {"a.txt": "a", "b.txt": "b"})
			create_file_structure(dst, {"stray.txt": "stray"})

			stdout = io.StringIO()
			with contextlib.redirect_stdout(stdout):
				results = sync_cmd(["--settings", str(settings)])
			self.assertIsNone(results)
			self.assertIn("--dir", stdout.getvalue())

			results = sync_cmd(["--dir", str(src), str(dst), "--sha256", "--ignore", str(src / "b.txt"), "--save-settings", "--settings", str(settings), "-qq"])
			self.assertEqual(results.exit_code, 0)
			self.assertTrue((dst / "a.txt").exists())
			self.assertFalse((dst / "b.txt").exists())
			self.assertTrue((dst / "stray.txt").exists())
			self.assertTrue(settings.exists())

			# stored settings are reused, flags on the command line are added
			results = sync_cmd(["--settings", str(settings), "--delete", "-qq"])
			self.assertEqual(results.exit_code, 0)
			self.assertTrue(results.request.strong_hash)
			self.assertTrue(results.request.mirror)
			self.assertEqual(results.request.ignore, (src / "b.txt",))
			self.assertFalse((dst / "stray.txt").exists())

			results = sync_cmd(["--file", str(src / "b.txt"), str(test_root / "single"), "-qq"])
			self.assertEqual(results.exit_code, 0)
			self.assertEqual((test_root / "single" / "b.txt").read_text(), "b")

			results = sync_cmd(["--dir", str(test_root / "missing"), str(dst), "-qq"])
			self.assertEqual(results.exit_code, 1)

if __name__ == "__main__":
	try:
		unittest.main()
	except SystemExit as e:
		pass
