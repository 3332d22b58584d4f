from pathlib import Path
import tempfile
import unittest

from epub_fixtures import PNG_BYTES, make_epub, xhtml

from quire.errors import ArchiveReadError
from quire.extract import apply_replacements, canonical_member, extract_archive, list_archive_members, write_first
from quire.models import JobConfiguration, NonChapterDocument, Replacement


class ApplyReplacementsTests(unittest.TestCase):
    def test_only_body_lines_are_replaced(self) -> None:
        text = "<head>\n<title>teh</title>\n</head>\n<body>\n<p>teh cat</p>\n</body>\n<!-- teh -->"
        result = apply_replacements(text, [Replacement(before="teh", after="the")])
        self.assertEqual(result, "<head>\n<title>teh</title>\n</head>\n<body>\n<p>the cat</p>\n</body>\n<!-- teh -->")

    def test_replacements_apply_in_order(self) -> None:
        text = "<body>\nab\n</body>"
        result = apply_replacements(
            text,
            [Replacement(before="a", after="b"), Replacement(before="bb", after="c")],
        )
        self.assertEqual(result, "<body>\nc\n</body>")

    def test_body_tags_are_verbatim(self) -> None:
        text = "<body class=\"x\">x</body>"
        self.assertEqual(apply_replacements(text, [Replacement(before="x", after="y")]), "<body class=\"x\">y</body>")

    def test_single_line_body_leaves_surrounding_markup_alone(self) -> None:
        text = "<html>\n<body><p>html</p></body>\n</html>"
        result = apply_replacements(text, [Replacement(before="html", after="HTML")])
        self.assertEqual(result, "<html>\n<body><p>HTML</p></body>\n</html>")

    def test_text_after_body_is_never_replaced(self) -> None:
        text = "<head><title>a</title></head><body>a</body><!-- a -->\n<p>a</p>\n</html>"
        result = apply_replacements(text, [Replacement(before="a", after="b")])
        self.assertEqual(result, "<head><title>a</title></head><body>b</body><!-- a -->\n<p>a</p>\n</html>")

    def test_document_without_body_is_unchanged(self) -> None:
        text = "<svg>\n<text>old</text>\n</svg>"
        self.assertEqual(apply_replacements(text, [Replacement(before="old", after="new")]), text)

    def test_empty_replacements_keep_input(self) -> None:
        text = "<body>\r\nkeep\r\n</body>"
        self.assertIs(apply_replacements(text, []), text)

    def test_crlf_input_is_normalized_when_rewritten(self) -> None:
        text = "<body>\r\nold\r\n</body>"
        self.assertEqual(apply_replacements(text, [Replacement(before="old", after="new")]), "<body>\nnew\n</body>")


class CanonicalMemberTests(unittest.TestCase):
    def test_parent_references_are_stripped(self) -> None:
        self.assertEqual(canonical_member("../../etc/passwd"), "etc/passwd")
        self.assertEqual(canonical_member("/OEBPS/./Text/a.xhtml"), "OEBPS/Text/a.xhtml")
        self.assertEqual(canonical_member("OEBPS\\Text\\a.xhtml"), "OEBPS/Text/a.xhtml")
        self.assertEqual(canonical_member(".."), "")


class ExtractArchiveTests(unittest.TestCase):
    def _config(self, replacements: list[Replacement] | None = None) -> JobConfiguration:
        return JobConfiguration(
            chapter_formats=["chapter"],
            non_chapter_documents=[NonChapterDocument(format="cover", is_before_chapters=True, descriptor="Cover")],
            replacements=replacements or [],
        )

    def _archive(self, chapter_text: str = "first") -> bytes:
        return make_epub(
            {
                "OEBPS/content.opf": "<package/>",
                "OEBPS/toc.ncx": "<ncx/>",
                "OEBPS/Text/cover.xhtml": xhtml("Cover", ["cover"]),
                "OEBPS/Text/chapter_01.xhtml": xhtml("One", [chapter_text]),
                "OEBPS/Text/chapter_02.xhtml": xhtml("Two", ["two"]),
                "OEBPS/Text/nav.xhtml": xhtml("Nav", ["nav"]),
                "OEBPS/Images/pic.png": PNG_BYTES,
            }
        )

    def test_extracts_classified_documents_and_assets(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            job_dir = Path(tmp)
            entries = []
            config = self._config()
            added = extract_archive(self._archive(), job_dir, config, entries)

            self.assertEqual(added, entries)
            paths = [entry.member_path for entry in entries]
            self.assertIn("OEBPS/Text/chapter0.xhtml", paths)
            self.assertIn("OEBPS/Text/chapter1.xhtml", paths)
            self.assertIn("OEBPS/Text/cover.xhtml", paths)
            self.assertIn("OEBPS/Images/pic.png", paths)
            self.assertIn("OEBPS/content.opf", paths)
            self.assertIn("mimetype", paths)
            self.assertNotIn("OEBPS/toc.ncx", paths)
            self.assertNotIn("OEBPS/Text/nav.xhtml", paths)
            self.assertFalse((job_dir / "OEBPS" / "toc.ncx").exists())
            self.assertFalse((job_dir / "OEBPS" / "Text" / "nav.xhtml").exists())
            self.assertEqual((job_dir / "OEBPS" / "Images" / "pic.png").read_bytes(), PNG_BYTES)
            self.assertEqual(config.chapter_index, 2)

            cover = next(entry for entry in entries if entry.name == "cover")
            self.assertTrue(cover.is_before_chapters)
            self.assertEqual(cover.descriptor, "Cover")
            chapter = next(entry for entry in entries if entry.name == "chapter0")
            self.assertTrue(chapter.is_body)
            self.assertIsNone(chapter.play_order)

    def test_first_writer_wins_across_archives(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            job_dir = Path(tmp)
            entries = []
            config = self._config()
            extract_archive(self._archive("from first"), job_dir, config, entries)
            first_count = len(entries)
            extract_archive(self._archive("from second"), job_dir, config, entries)

            names = [entry.member_path for entry in entries]
            self.assertEqual(names.count("OEBPS/Text/cover.xhtml"), 1)
            self.assertEqual(names.count("OEBPS/content.opf"), 1)
            self.assertIn("OEBPS/Text/chapter2.xhtml", names)
            self.assertIn("OEBPS/Text/chapter3.xhtml", names)
            self.assertEqual(len(entries), first_count + 2)
            first_chapter = (job_dir / "OEBPS" / "Text" / "chapter0.xhtml").read_text(encoding="utf-8")
            self.assertIn("from first", first_chapter)
            third_chapter = (job_dir / "OEBPS" / "Text" / "chapter2.xhtml").read_text(encoding="utf-8")
            self.assertIn("from second", third_chapter)

    def test_replacements_are_applied_to_content_documents(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            job_dir = Path(tmp)
            config = self._config([Replacement(before="first", after="1st")])
            extract_archive(self._archive("first blood"), job_dir, config, [])
            text = (job_dir / "OEBPS" / "Text" / "chapter0.xhtml").read_text(encoding="utf-8")
            self.assertIn("<p>1st blood</p>", text)

    def test_thread_pool_gives_same_entries(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            serial: list = []
            parallel: list = []
            extract_archive(self._archive(), Path(tmp) / "a", self._config(), serial)
            extract_archive(self._archive(), Path(tmp) / "b", self._config(), parallel, max_workers=4)
            self.assertEqual(serial, parallel)

    def test_corrupt_archive_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ArchiveReadError):
                extract_archive(b"not a zip file", Path(tmp), self._config(), [])
            with self.assertRaises(ArchiveReadError):
                list_archive_members(b"")

    def test_unreadable_member_is_skipped(self) -> None:
        archive = bytearray(self._archive())
        offset = archive.find(PNG_BYTES)
        self.assertNotEqual(offset, -1)
        archive[offset + 10] ^= 0xFF
        with tempfile.TemporaryDirectory() as tmp:
            job_dir = Path(tmp)
            entries = []
            with self.assertLogs("quire.extract", level="WARNING") as logs:
                extract_archive(bytes(archive), job_dir, self._config(), entries)

            paths = [entry.member_path for entry in entries]
            self.assertNotIn("OEBPS/Images/pic.png", paths)
            self.assertIn("OEBPS/Text/chapter0.xhtml", paths)
            self.assertIn("OEBPS/content.opf", paths)
            self.assertFalse((job_dir / "OEBPS" / "Images" / "pic.png").exists())
            self.assertTrue(any("OEBPS/Images/pic.png" in line for line in logs.output))

    def test_list_archive_members_skips_directories(self) -> None:
        names = list_archive_members(self._archive())
        self.assertIn("mimetype", names)
        self.assertIn("OEBPS/toc.ncx", names)
        self.assertNotIn("META-INF/", names)


class WriteFirstTests(unittest.TestCase):
    def test_second_writer_is_a_no_op(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "dir" / "file.txt"
            self.assertTrue(write_first(target, b"one"))
            self.assertFalse(write_first(target, b"two"))
            self.assertEqual(target.read_bytes(), b"one")

    def test_write_failure_is_logged_and_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            blocker = Path(tmp) / "blocker"
            blocker.write_text("a file, not a directory", encoding="utf-8")
            with self.assertLogs("quire.extract", level="WARNING") as logs:
                self.assertFalse(write_first(blocker / "child.txt", b"data"))
            self.assertTrue(any("failed to write" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
