import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from bookshelf import mutations
from bookshelf.build import build_site
from bookshelf.library import LibraryError, SitePaths, list_books, load_config, read_book

SHELVES = [
    {"id": "top5", "label": "Top 5", "folder": "top-5-reads"},
    {"id": "good", "label": "Good Reads", "folder": "good-reads"},
]


def _make_site(site_dir: Path, shelves: list[dict[str, str]] = SHELVES) -> SitePaths:
    payload = {"siteTitle": "T", "siteSubtitle": "S", "footerText": "F", "shelves": shelves}
    (site_dir / "config.json").write_text(json.dumps(payload), encoding="utf-8")
    return SitePaths(site_dir)


class TestBookMutations(unittest.TestCase):
    def test_save_then_move_then_build(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            saved = mutations.create_book(
                paths, "good", {"title": "Deep Work", "author": "Cal Newport"}
            )
            self.assertEqual(saved, (paths.books_dir / "good-reads" / "deep-work.json").resolve())

            moved = mutations.move_book(paths, saved, "top5")
            result = build_site(paths)
            index = json.loads(
                (paths.dist_dir / "books" / "index.json").read_text(encoding="utf-8")
            )

            self.assertTrue(moved.is_file())
            self.assertFalse(saved.exists())
            self.assertEqual(moved.parent.name, "top-5-reads")

        self.assertEqual(index, ["top-5-reads/deep-work.json"])
        self.assertEqual(result.book_files, index)

    def test_save_then_read_keeps_every_field(self) -> None:
        record = {
            "title": "Deep Work",
            "author": "Cal Newport",
            "category": "Business",
            "publishDate": "2016-01-05",
            "pages": 296,
            "cover": "https://covers.test/deep-work.jpg",
            "notes": "Reread chapter two.",
            "clickBehavior": "redirect",
            "link": "https://example.test/deep-work",
        }
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            saved = mutations.save_book(paths, "good", "deep-work.json", record)
            stored = json.loads(saved.read_text(encoding="utf-8"))

        self.assertEqual(stored, record)
        self.assertNotIn("coverLocal", stored)

    def test_save_book_rejects_unknown_shelf(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            with self.assertRaises(LibraryError) as context:
                mutations.save_book(paths, "nope", "x.json", {"title": "X", "author": "Y"})

        self.assertEqual(str(context.exception), 'Shelf with id "nope" not found')

    def test_save_book_validates_publish_date(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            with self.assertRaises(LibraryError):
                mutations.save_book(
                    paths,
                    "good",
                    "x.json",
                    {"title": "X", "author": "Y", "publishDate": "March 2020"},
                )

            self.assertFalse((paths.books_dir / "good-reads" / "x.json").exists())

    def test_create_book_refuses_to_overwrite(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            mutations.create_book(paths, "good", {"title": "Dune", "author": "Herbert"})

            with self.assertRaises(LibraryError):
                mutations.create_book(paths, "good", {"title": "Dune", "author": "Someone"})

            self.assertEqual(
                read_book(paths.books_dir / "good-reads" / "dune.json").author, "Herbert"
            )

    def test_move_book_to_unknown_shelf_keeps_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            saved = mutations.create_book(paths, "good", {"title": "Dune", "author": "H"})

            with self.assertRaises(LibraryError) as context:
                mutations.move_book(paths, saved, "missing")

            self.assertTrue(saved.is_file())

        self.assertEqual(str(context.exception), 'Target shelf with id "missing" not found')

    def test_move_book_to_same_shelf_is_a_no_op(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            saved = mutations.create_book(paths, "good", {"title": "Dune", "author": "H"})

            moved = mutations.move_book(paths, saved, "good")

            self.assertEqual(moved, saved)
            self.assertTrue(saved.is_file())

    def test_move_book_refuses_to_clobber(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            source = mutations.create_book(paths, "good", {"title": "Dune", "author": "A"})
            mutations.create_book(paths, "top5", {"title": "Dune", "author": "B"})

            with self.assertRaises(LibraryError):
                mutations.move_book(paths, source, "top5")

            self.assertTrue(source.is_file())

    def test_update_book_moves_and_keeps_file_name(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            saved = mutations.create_book(paths, "good", {"title": "Dune", "author": "A"})

            updated = mutations.update_book(
                paths, saved, {"title": "Dune Messiah", "author": "A"}, target_shelf_id="top5"
            )

            self.assertEqual(updated.name, "dune.json")
            self.assertEqual(updated.parent.name, "top-5-reads")
            self.assertEqual(read_book(updated).title, "Dune Messiah")
            self.assertFalse(saved.exists())

    def test_delete_book_is_idempotent(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            saved = mutations.create_book(paths, "good", {"title": "Dune", "author": "A"})

            self.assertTrue(mutations.delete_book(paths, saved))
            self.assertFalse(mutations.delete_book(paths, saved))

    def test_book_operations_refuse_files_outside_shelves(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            outside = Path(tmpdir) / "config.json"
            stray_dir = paths.books_dir / "unlisted"
            stray_dir.mkdir(parents=True)
            stray = stray_dir / "dune.json"
            stray.write_text(json.dumps({"title": "Dune", "author": "H"}), encoding="utf-8")
            record = {"title": "Dune", "author": "H"}

            for target in (outside, stray, paths.books_dir / "good-reads" / ".." / "x.json"):
                with self.assertRaises(LibraryError):
                    mutations.delete_book(paths, target)
                with self.assertRaises(LibraryError):
                    mutations.move_book(paths, target, "top5")
                with self.assertRaises(LibraryError):
                    mutations.update_book(paths, target, record)

            self.assertTrue(outside.is_file())
            self.assertTrue(stray.is_file())
            self.assertEqual(list_books(paths), [])

    def test_non_string_file_name_is_rejected(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            with self.assertRaises(LibraryError):
                mutations.save_book(paths, "good", 1, {"title": "X", "author": "Y"})

    def test_move_books_reports_each_failure(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            first = mutations.create_book(paths, "good", {"title": "One", "author": "A"})
            missing = paths.books_dir / "good-reads" / "ghost.json"

            result = mutations.move_books(paths, [first, missing], "top5")

        self.assertFalse(result.ok)
        self.assertEqual(result.succeeded, [first])
        self.assertEqual(result.failed[0][0], missing)
        self.assertIn("1 failed", result.summary("Moved"))


class TestShelfMutations(unittest.TestCase):
    def test_create_shelf_adds_folder_and_config_entry(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            shelf = mutations.create_shelf(paths, {"id": "toRead", "label": "To Read"})

            self.assertTrue((paths.books_dir / "to-read").is_dir())
            self.assertEqual(load_config(paths).shelves[-1], shelf)

    def test_create_shelf_rejects_duplicate_id(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            with self.assertRaises(LibraryError):
                mutations.create_shelf(paths, {"id": "good", "folder": "elsewhere"})

    def test_delete_shelf_refuses_non_empty_shelf(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            mutations.create_book(paths, "good", {"title": "One", "author": "A"})
            mutations.create_book(paths, "good", {"title": "Two", "author": "A"})

            with self.assertRaises(LibraryError) as context:
                mutations.delete_shelf(paths, "good")

            self.assertIsNotNone(load_config(paths).find_shelf("good"))

        self.assertEqual(
            str(context.exception), 'Cannot delete shelf "Good Reads" - it contains 2 book(s)'
        )

    def test_delete_shelf_removes_empty_folder(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            shelf_dir = paths.books_dir / "good-reads"
            shelf_dir.mkdir(parents=True)
            (shelf_dir / ".DS_Store").write_text("", encoding="utf-8")

            mutations.delete_shelf(paths, "good")

            self.assertFalse(shelf_dir.exists())
            self.assertEqual([shelf.id for shelf in load_config(paths).shelves], ["top5"])

    def test_update_shelf_changes_label_only(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            mutations.update_shelf(paths, "good", "Worth It")
            shelf = load_config(paths).require_shelf("good")

        self.assertEqual(shelf.label, "Worth It")
        self.assertEqual(shelf.folder, "good-reads")

    def test_reorder_shelves_appends_omitted_shelves(self) -> None:
        with TemporaryDirectory() as tmpdir:
            shelves = SHELVES + [{"id": "future", "label": "Future", "folder": "future-reads"}]
            paths = _make_site(Path(tmpdir), shelves)

            mutations.reorder_shelves(paths, ["future"])
            order = [shelf.id for shelf in load_config(paths).shelves]

        self.assertEqual(order, ["future", "top5", "good"])

    def test_reorder_shelves_rejects_unknown_id(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            with self.assertRaises(LibraryError):
                mutations.reorder_shelves(paths, ["good", "ghost"])
            with self.assertRaises(LibraryError):
                mutations.reorder_shelves(paths, [{}])

    def test_merge_shelf_moves_books_and_removes_source(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))
            mutations.create_book(paths, "good", {"title": "One", "author": "A"})
            mutations.create_book(paths, "good", {"title": "Two", "author": "A"})

            result = mutations.merge_shelf(paths, "good", "top5")
            entries = list_books(paths)
            config = load_config(paths)

        self.assertTrue(result.ok)
        self.assertEqual(len(result.succeeded), 2)
        self.assertEqual({entry.shelf_id for entry in entries}, {"top5"})
        self.assertIsNone(config.find_shelf("good"))

    def test_update_config_keeps_unchanged_fields(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir))

            config = mutations.update_config(paths, site_title="New Title")

        self.assertEqual(config.site_title, "New Title")
        self.assertEqual(config.footer_text, "F")
        self.assertEqual(len(config.shelves), 2)

    def test_load_sample_data_copies_books_and_adds_shelves(self) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = _make_site(Path(tmpdir), SHELVES[:1])
            sample_shelf = paths.sample_books_dir / "good-reads"
            sample_shelf.mkdir(parents=True)
            (sample_shelf / "dune.json").write_text(
                json.dumps({"title": "Dune", "author": "H"}), encoding="utf-8"
            )
            (paths.sample_books_dir / "covers").mkdir()

            loaded = mutations.load_sample_data(paths)
            config = load_config(paths)

            self.assertTrue((paths.books_dir / "good-reads" / "dune.json").is_file())
            self.assertFalse((paths.books_dir / "covers").exists())

        self.assertEqual(loaded, 1)
        self.assertEqual(
            [shelf.id for shelf in config.shelves], ["top5", "good", "current", "future"]
        )


if __name__ == "__main__":
    unittest.main()
