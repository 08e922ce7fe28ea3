"""Page segmentation of extracted document text."""

from typing import List

from .jobs.models import PageUnit

# pdf text extraction separates pages with a blank line
DEFAULT_SEPARATOR = "\n\n"


class PageSegmenter:
    """
    Splits extracted text into page units.

    Units that are empty or whitespace-only are dropped, so page numbers are
    positions in the resulting sequence rather than the source document's
    page numbers. Zero units is a valid result.
    """

    def __init__(self, separator: str = DEFAULT_SEPARATOR):
        if not separator:
            raise ValueError("separator must not be empty")
        self.separator = separator

    def split(self, text: str) -> List[PageUnit]:
        if not text:
            return []

        units = [chunk.strip() for chunk in text.split(self.separator)]
        return [
            PageUnit(page_number=index, text=unit)
            for index, unit in enumerate((u for u in units if u), start=1)
        ]

    def join(self, units: List[PageUnit]) -> str:
        """Inverse of split for already-clean units."""
        return self.separator.join(unit.text for unit in units)


def split_pages(text: str, separator: str = DEFAULT_SEPARATOR) -> List[PageUnit]:
    """Split text into page units with the default segmenter."""
    return PageSegmenter(separator).split(text)
