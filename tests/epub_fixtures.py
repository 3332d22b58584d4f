from __future__ import annotations

import io
from typing import Optional, Union
import zipfile

CONTAINER_XML = (
    "<?xml version=\"1.0\" encoding=\"UTF-8\"?>\n"
    "<container version=\"1.0\" xmlns=\"urn:oasis:names:tc:opendocument:xmlns:container\">\n"
    "\t<rootfiles>\n"
    "\t\t<rootfile full-path=\"{opf_path}\" media-type=\"application/oebps-package+xml\"/>\n"
    "\t</rootfiles>\n"
    "</container>\n"
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"


def xhtml(title: str, paragraphs: list[str]) -> str:
    body = "\n".join(f"\t<p>{text}</p>" for text in paragraphs)
    return (
        "<?xml version=\"1.0\" encoding=\"utf-8\"?>\n"
        "<html xmlns=\"http://www.w3.org/1999/xhtml\">\n"
        "<head>\n"
        f"\t<title>{title}</title>\n"
        "</head>\n"
        "<body>\n"
        f"{body}\n"
        "</body>\n"
        "</html>\n"
    )


def package_document(title: str, hrefs: list[str], *, with_guide: bool = True) -> str:
    items = "\n".join(
        f"\t\t<item id=\"i{index}\" href=\"{href}\" media-type=\"application/xhtml+xml\"/>"
        for index, href in enumerate(hrefs)
    )
    refs = "\n".join(f"\t\t<itemref idref=\"i{index}\"/>" for index in range(len(hrefs)))
    guide = (
        "\t<guide>\n"
        "\t\t<reference type=\"cover\" title=\"Cover\" href=\"Text/cover.xhtml\"/>\n"
        "\t</guide>\n"
        if with_guide
        else ""
    )
    return (
        "<?xml version=\"1.0\" encoding=\"utf-8\"?>\n"
        "<package xmlns=\"http://www.idpf.org/2007/opf\" unique-identifier=\"BookId\" version=\"3.0\">\n"
        "\t<metadata xmlns:dc=\"http://purl.org/dc/elements/1.1/\">\n"
        "\t\t<dc:identifier id=\"BookId\">urn:uuid:source-book</dc:identifier>\n"
        f"\t\t<dc:title>{title}</dc:title>\n"
        "\t\t<dc:language>en</dc:language>\n"
        "\t</metadata>\n"
        "\t<manifest>\n"
        f"{items}\n"
        "\t\t<item id=\"ncx\" href=\"toc.ncx\" media-type=\"application/x-dtbncx+xml\"/>\n"
        "\t</manifest>\n"
        "\t<spine toc=\"ncx\">\n"
        f"{refs}\n"
        "\t</spine>\n"
        f"{guide}"
        "</package>\n"
    )


def make_epub(files: dict[str, Union[str, bytes]], *, opf_path: Optional[str] = "OEBPS/content.opf") -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("mimetype", b"application/epub+zip", compress_type=zipfile.ZIP_STORED)
        zf.writestr("META-INF/", b"")
        if opf_path:
            zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf_path=opf_path))
        for name, payload in files.items():
            data = payload.encode("utf-8") if isinstance(payload, str) else payload
            zf.writestr(name, data)
    return buffer.getvalue()


def volume_epub(suffix: str, chapter_count: int = 3, *, title: Optional[str] = None) -> bytes:
    """A small book: one title page, ``chapter_count`` chapters and an afterword."""
    chapters = [f"Text/chapter_{index:03d}.xhtml" for index in range(1, chapter_count + 1)]
    hrefs = [f"Text/titlepage-{suffix}.xhtml", *chapters, f"Text/afterword-{suffix}.xhtml", "nav.xhtml"]
    files: dict[str, Union[str, bytes]] = {
        "OEBPS/content.opf": package_document(title or f"Volume {suffix}", hrefs),
        "OEBPS/toc.ncx": "<ncx xmlns=\"http://www.daisy.org/z3986/2005/ncx/\"><navMap/></ncx>",
        "OEBPS/nav.xhtml": xhtml("Navigation", ["old toc"]),
        f"OEBPS/Text/titlepage-{suffix}.xhtml": xhtml(f"Title {suffix}", [f"Volume {suffix}"]),
        f"OEBPS/Text/afterword-{suffix}.xhtml": xhtml(f"Afterword {suffix}", ["The end."]),
        "OEBPS/Styles/style.css": f"/* volume {suffix} */ p {{ margin: 0; }}",
        "OEBPS/Images/cover.png": PNG_BYTES,
    }
    for index, href in enumerate(chapters, start=1):
        files[f"OEBPS/{href}"] = xhtml(f"{suffix} chapter {index}", [f"Volume {suffix}, chapter {index}."])
    return make_epub(files)


def volume_options(title: str = "Merged Saga") -> dict:
    return {
        "chapterFormat": [{"format": "chapter_"}],
        "nonChapterXHTML": [
            {"format": "titlepage-a", "isBeforeChapters": True, "descriptor": "Title Page A"},
            {"format": "titlepage-b", "isBeforeChapters": True, "descriptor": "Title Page B"},
            {"format": "afterword-a", "isBeforeChapters": False, "descriptor": "Afterword A"},
            {"format": "afterword-b", "isBeforeChapters": False, "descriptor": "Afterword B"},
        ],
        "replacements": [],
        "outputName": title,
    }
