"""Zip export with ignore patterns and zip import with root-folder detection."""

from __future__ import annotations

import io
import tempfile
import unittest
import zipfile
from pathlib import Path
from unittest import mock

from filemanager import archive
from filemanager.errors import ArchiveError, InvalidInput, NotFound


def _snapshot(root: Path) -> dict[str, bytes]:
    """Relative path -> bytes for files, None for directories."""
    return {
        p.relative_to(root).as_posix(): (p.read_bytes() if p.is_file() else None)
        for p in sorted(root.rglob("*"))
    }


def _make_zip(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buffer.getvalue()


class TempRootMixin:
    """Point job and export directories at a private temp root."""

    def setUp(self) -> None:
        self._tmp_root = tempfile.TemporaryDirectory()
        self.temp_root = Path(self._tmp_root.name)
        patchers = [
            mock.patch("filemanager.archive.TEMP_ROOT", self.temp_root),
            mock.patch("filemanager.config.TEMP_ROOT", self.temp_root),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)
        self.addCleanup(self._tmp_root.cleanup)


class IgnorePatternTests(unittest.TestCase):
    def test_prefix_match_on_segments(self) -> None:
        patterns = ["node_modules"]
        self.assertTrue(archive.is_ignored("node_modules", patterns))
        self.assertTrue(archive.is_ignored("node_modules/pkg/index.js", patterns))
        self.assertFalse(archive.is_ignored("node_modules_backup", patterns))
        self.assertFalse(archive.is_ignored("src/node_modules", patterns))

    def test_patterns_are_not_globs(self) -> None:
        self.assertFalse(archive.is_ignored("debug.log", ["*.log"]))

    def test_read_ignore_file_skips_comments_and_strips_slashes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / ".gitignore"
            path.write_text("# build output\n/dist/\n\n!keep.txt\n.venv\ncoverage/\n", encoding="utf-8")

            self.assertEqual(archive.read_ignore_file(path), ["dist", ".venv", "coverage"])

    def test_missing_ignore_file_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(archive.read_ignore_file(Path(tmp) / ".gitignore"), [])

    def test_export_patterns_include_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / ".gitignore").write_text("dist\nnode_modules\n", encoding="utf-8")

            with mock.patch("filemanager.archive.EXPORT_EXCLUDES", ["node_modules"]):
                self.assertEqual(archive.export_patterns(Path(tmp)), ["node_modules", "dist"])


class ExportTests(TempRootMixin, unittest.TestCase):
    def _project(self, root: Path) -> None:
        (root / "src").mkdir()
        (root / "src" / "app.js").write_text("console.log(1)", encoding="utf-8")
        (root / "node_modules" / "lib" / "deep").mkdir(parents=True)
        (root / "node_modules" / "lib" / "deep" / "x.js").write_text("x", encoding="utf-8")
        (root / "src" / "node_modules").mkdir()
        (root / "src" / "node_modules" / "kept.js").write_text("k", encoding="utf-8")
        (root / "README.md").write_text("# demo", encoding="utf-8")
        (root / "empty").mkdir()

    def test_export_excludes_ignored_prefixes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "proj"
            source.mkdir()
            self._project(source)

            zip_path, size = archive.export_directory(source, ["node_modules"])

            self.assertEqual(zip_path.name, "proj.zip")
            self.assertEqual(size, zip_path.stat().st_size)
            with zipfile.ZipFile(zip_path) as zf:
                names = set(zf.namelist())
            self.assertIn("src/app.js", names)
            self.assertIn("src/node_modules/kept.js", names)
            self.assertIn("empty/", names)
            self.assertFalse(any(n.startswith("node_modules") for n in names))

    def test_export_uses_gitignore_by_default(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "proj"
            (source / "dist").mkdir(parents=True)
            (source / "dist" / "bundle.js").write_text("b", encoding="utf-8")
            (source / "main.py").write_text("print()", encoding="utf-8")
            (source / ".gitignore").write_text("dist/\n", encoding="utf-8")

            zip_path, _ = archive.export_directory(source)

            with zipfile.ZipFile(zip_path) as zf:
                names = set(zf.namelist())
            self.assertEqual(names, {".gitignore", "main.py"})

    def test_export_missing_source(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(NotFound):
                archive.export_directory(Path(tmp) / "nope")

    def test_export_of_file_is_invalid(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "f.txt"
            target.write_text("x", encoding="utf-8")
            with self.assertRaises(InvalidInput):
                archive.export_directory(target)

    def test_resolve_export_file_only_accepts_exports(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "proj"
            source.mkdir()
            (source / "a.txt").write_text("a", encoding="utf-8")
            stray = Path(tmp) / "other.zip"
            stray.write_bytes(b"PK")

            zip_path, _ = archive.export_directory(source)

            self.assertEqual(archive.resolve_export_file(zip_path), zip_path.resolve())
            with self.assertRaises(InvalidInput):
                archive.resolve_export_file(stray)

            archive.discard_export(zip_path)
            self.assertFalse(zip_path.exists())
            self.assertFalse(zip_path.parent.exists())

    def test_stream_zip_produces_readable_archive(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp)
            self._project(source)
            (source / "big.bin").write_bytes(bytes(range(256)) * 9000)

            data = b"".join(archive.stream_zip(archive.iter_tree(source, ["node_modules"])))

            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                self.assertIsNone(zf.testzip())
                self.assertEqual(zf.read("big.bin"), bytes(range(256)) * 9000)
                self.assertEqual(zf.read("src/app.js"), b"console.log(1)")

    def test_collect_items_uses_base_names(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "folder" / "sub").mkdir(parents=True)
            (root / "folder" / "sub" / "a.txt").write_text("a", encoding="utf-8")
            (root / "note.txt").write_text("n", encoding="utf-8")

            names = [arc for _, arc in archive.collect_items([root / "folder", root / "note.txt"])]

            self.assertEqual(names, ["folder/", "folder/sub/", "folder/sub/a.txt", "note.txt"])
            with self.assertRaises(NotFound):
                archive.collect_items([root / "missing"])

    def test_collect_items_rejects_clashing_names(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            for folder in ("a", "b"):
                (root / folder).mkdir()
                (root / folder / "x.txt").write_text(folder, encoding="utf-8")

            with self.assertRaises(InvalidInput):
                archive.collect_items([root / "a" / "x.txt", root / "b" / "x.txt"])

    def test_symlinked_directory_is_archived_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "real").mkdir()
            (root / "real" / "inside.txt").write_text("i", encoding="utf-8")
            (root / "link").symlink_to(root / "real")

            names = [arc for _, arc in archive.iter_tree(root)]

            self.assertEqual(names, ["link/", "real/", "real/inside.txt"])


class ImportTests(TempRootMixin, unittest.TestCase):
    def _write_zip(self, directory: Path, members: dict[str, bytes]) -> Path:
        path = directory / "upload.zip"
        path.write_bytes(_make_zip(members))
        return path

    def test_single_root_folder_is_unwrapped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            zip_path = self._write_zip(tmp_path, {
                "repo-main/README.md": b"readme",
                "repo-main/src/app.py": b"print(1)",
            })
            dest = tmp_path / "dest"
            dest.mkdir()

            root_name = archive.import_zip_file(zip_path, dest)

            self.assertEqual(root_name, "repo-main")
            self.assertEqual((dest / "README.md").read_bytes(), b"readme")
            self.assertEqual((dest / "src" / "app.py").read_bytes(), b"print(1)")
            self.assertFalse((dest / "repo-main").exists())

    def test_folder_with_sibling_file_is_not_unwrapped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            zip_path = self._write_zip(tmp_path, {
                "pkg/mod.py": b"x = 1",
                "setup.cfg": b"[metadata]",
            })
            dest = tmp_path / "dest"
            dest.mkdir()

            self.assertIsNone(archive.import_zip_file(zip_path, dest))
            self.assertTrue((dest / "pkg" / "mod.py").is_file())
            self.assertTrue((dest / "setup.cfg").is_file())

    def test_import_overwrites_existing_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            dest = tmp_path / "dest"
            dest.mkdir()
            (dest / "a.txt").write_text("old", encoding="utf-8")
            (dest / "untouched.txt").write_text("keep", encoding="utf-8")
            zip_path = self._write_zip(tmp_path, {"a.txt": b"new", "b.txt": b"b"})

            archive.import_zip_file(zip_path, dest)

            self.assertEqual((dest / "a.txt").read_text(encoding="utf-8"), "new")
            self.assertEqual((dest / "untouched.txt").read_text(encoding="utf-8"), "keep")

    def test_import_twice_is_idempotent(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            zip_path = self._write_zip(tmp_path, {
                "a.txt": b"a",
                "docs/guide.md": b"guide",
                "docs/img/": b"",
            })
            dest = tmp_path / "dest"
            dest.mkdir()

            archive.import_zip_file(zip_path, dest)
            once = _snapshot(dest)
            archive.import_zip_file(zip_path, dest)

            self.assertEqual(_snapshot(dest), once)

    def test_export_then_import_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            source = tmp_path / "proj"
            (source / "src" / "pkg").mkdir(parents=True)
            (source / "src" / "pkg" / "mod.py").write_text("VALUE = 1\n", encoding="utf-8")
            (source / "data.bin").write_bytes(b"\x00\x01\xff" * 100)
            (source / "empty").mkdir()
            (source / "node_modules" / "dep").mkdir(parents=True)
            (source / "node_modules" / "dep" / "index.js").write_text("x", encoding="utf-8")

            zip_path, _ = archive.export_directory(source, ["node_modules"])
            dest = tmp_path / "dest"
            dest.mkdir()
            archive.import_zip_file(zip_path, dest)

            expected = {k: v for k, v in _snapshot(source).items() if not k.startswith("node_modules")}
            self.assertEqual(_snapshot(dest), expected)

    def test_export_of_single_subfolder_is_unwrapped_on_import(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            source = tmp_path / "proj"
            (source / "src").mkdir(parents=True)
            (source / "src" / "a.txt").write_text("a", encoding="utf-8")

            zip_path, _ = archive.export_directory(source, [])
            dest = tmp_path / "dest"
            dest.mkdir()
            root_name = archive.import_zip_file(zip_path, dest)

            self.assertEqual(root_name, "src")
            self.assertEqual(_snapshot(dest), {"a.txt": b"a"})

    def test_corrupt_zip_raises_and_cleans_up(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            bad = tmp_path / "bad.zip"
            bad.write_bytes(b"this is not a zip")
            dest = tmp_path / "dest"
            dest.mkdir()

            with self.assertRaises(ArchiveError):
                archive.import_zip_file(bad, dest)

            self.assertEqual(list(self.temp_root.iterdir()), [])
            self.assertEqual(list(dest.iterdir()), [])

    def test_upload_stream_is_imported_and_removed(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp)
            payload = io.BytesIO(_make_zip({"only/inside.txt": b"ok"}))

            archive.import_zip_upload(payload, dest)

            self.assertEqual((dest / "inside.txt").read_bytes(), b"ok")
            self.assertEqual(list(self.temp_root.iterdir()), [])


class RootDetectionTests(unittest.TestCase):
    def test_hidden_entries_skipped_only_on_request(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "repo-main").mkdir()
            (root / ".meta").mkdir()

            self.assertIsNone(archive.detect_root_folder(root))
            self.assertEqual(archive.detect_root_folder(root, skip_hidden=True), root / "repo-main")

    def test_single_file_is_not_a_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "file.txt").write_text("x", encoding="utf-8")

            self.assertIsNone(archive.detect_root_folder(root))


if __name__ == "__main__":
    unittest.main()
