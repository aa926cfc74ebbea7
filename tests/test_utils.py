from app.utils import parse_name


def test_parse_name_strips_every_tag_style() -> None:
    parsed = parse_name("[NL] 〈4K〉 Breaking Bad 【HEVC】 |EN| ┃VIP┃")

    assert parsed.title == "Breaking Bad"
    assert parsed.tags == ["NL", "4K", "HEVC", "EN", "VIP"]


def test_parse_name_collapses_whitespace_and_dashes() -> None:
    assert parse_name("  [DE] -  The   Office  ").title == "The Office"


def test_parse_name_keeps_parentheses() -> None:
    """Language and year hints in parentheses are handled by search terms."""

    assert parse_name("Dark (2017) (German)").title == "Dark (2017) (German)"


def test_parse_name_handles_empty_values() -> None:
    assert parse_name("").title == ""
    assert parse_name("[NL]").title == ""
