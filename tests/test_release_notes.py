from __future__ import annotations

from datetime import datetime

import pytest

from nvidia_updater.release_notes import describe_release_age, release_notes_to_text

NOW = datetime(2024, 6, 30, 18, 0)


def test_markup_is_flattened_and_cut_at_learn_more() -> None:
    markup = (
        "<p><b>Game Ready for Elden Ring</b></p>"
        "<ul><li>Support for DLSS 3.5</li><li>Bug fixes</li></ul>"
        "<a href=\"https://www.nvidia.com/en-us/geforce/news/\">Learn more</a> in the release highlights"
    )

    assert release_notes_to_text(markup) == (
        ">> Game Ready for Elden Ring <<\n"
        "- Support for DLSS 3.5\n"
        "- Bug fixes"
    )


def test_markup_without_learn_more_is_kept_whole() -> None:
    assert release_notes_to_text("\tFirst line<br/>Second line<br />") == "First line\nSecond line"


@pytest.mark.parametrize("markup", [None, ""])
def test_empty_markup_gives_empty_text(markup: str | None) -> None:
    assert release_notes_to_text(markup) == ""


@pytest.mark.parametrize(
    ("released", "expected"),
    [
        (None, "release date unknown"),
        (datetime(2024, 6, 30, 9, 0), "released today"),
        (datetime(2024, 6, 29, 23, 0), "released yesterday"),
        (datetime(2024, 6, 2), "released 28 days ago"),
        (datetime(2024, 3, 1), "released 4 months ago"),
    ],
)
def test_release_age(released: datetime | None, expected: str) -> None:
    assert describe_release_age(released, NOW) == expected
