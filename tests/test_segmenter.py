"""
Tests for page segmentation of extracted text.
"""

import pytest

from pagecast.segmenter import DEFAULT_SEPARATOR, PageSegmenter, split_pages


def test_empty_units_are_dropped():
    units = split_pages("Page1\n\nPage2\n\n\n\nPage3")

    assert [u.page_number for u in units] == [1, 2, 3]
    assert [u.text for u in units] == ["Page1", "Page2", "Page3"]


def test_units_are_trimmed():
    units = split_pages("  Intro  \n\n\tChapter one\n")

    assert [u.text for u in units] == ["Intro", "Chapter one"]


@pytest.mark.parametrize("text", ["", "   ", "\n\n", "\n\n  \n\n\t"])
def test_blank_text_yields_no_units(text):
    assert split_pages(text) == []


def test_split_is_stable_on_its_own_output():
    segmenter = PageSegmenter()
    units = segmenter.split("A\n\n\n\n B \n\nC")

    assert segmenter.split(segmenter.join(units)) == units


def test_custom_separator():
    units = split_pages("one\f two\f\fthree", separator="\f")

    assert [u.text for u in units] == ["one", "two", "three"]
    assert units[-1].page_number == 3


def test_single_newlines_stay_inside_a_page():
    units = split_pages("line one\nline two\n\nnext page")

    assert units[0].text == "line one\nline two"
    assert len(units) == 2


def test_empty_separator_rejected():
    with pytest.raises(ValueError):
        PageSegmenter("")


def test_default_separator():
    assert PageSegmenter().separator == DEFAULT_SEPARATOR == "\n\n"
