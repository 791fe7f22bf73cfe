"""Tests for quickfill.textmatch module."""
import re

from quickfill.textmatch import (
    edit_distance,
    expand_backrefs,
    reformat_compact_date,
    reformat_date,
    terminal_length,
)


class TestEditDistance:
    def test_identical(self) -> None:
        assert edit_distance("vorname", "vorname") == 0

    def test_empty(self) -> None:
        assert edit_distance("", "abc") == 3
        assert edit_distance("abc", "") == 3

    def test_insertion(self) -> None:
        assert edit_distance("vorname", "vornahme") == 1

    def test_classic(self) -> None:
        assert edit_distance("kitten", "sitting") == 3

    def test_symmetric(self) -> None:
        assert edit_distance("geburtsdatum", "gebdat") == edit_distance("gebdat", "geburtsdatum")


class TestTerminalLength:
    def test_plain_text(self) -> None:
        assert terminal_length("Anton") == 5

    def test_placeholders_do_not_count(self) -> None:
        assert terminal_length("${Familienname}$ ergab ${Promille}$") == 5

    def test_punctuation_and_whitespace_ignored(self) -> None:
        assert terminal_length("Berlin, 13.9.2024") == 13

    def test_more_filled_scores_higher(self) -> None:
        partial = "Blutprobe bei PGÜ ${Familienname}$ ergab ${Promille}$‰."
        filled = "Blutprobe bei PGÜ Abraham ergab ${Promille}$‰."
        assert terminal_length(filled) > terminal_length(partial)


class TestReformatCompactDate:
    def test_compact(self) -> None:
        assert reformat_compact_date("20131030") == "30.10.2013"

    def test_first_occurrence_only(self) -> None:
        assert reformat_compact_date("20131030 bis 20140101") == "30.10.2013 bis 20140101"

    def test_no_date_unchanged(self) -> None:
        assert reformat_compact_date("30.10.2013") == "30.10.2013"


class TestReformatDate:
    def test_separators(self) -> None:
        for text in ("20000125", "2000/01/25", "2000-01-25", "2000:01:25", "2000_01_25", "2000.01.25"):
            assert reformat_date(text) == "25.01.2000", text

    def test_unknown_format(self) -> None:
        assert reformat_date("25. Januar") is None


class TestExpandBackrefs:
    def _match(self, pattern: str, text: str) -> re.Match[str]:
        m = re.search(pattern, text)
        assert m is not None
        return m

    def test_numbered_groups(self) -> None:
        m = self._match(r"(\d{4})(\d{2})(\d{2})", "20000125")
        assert expand_backrefs("$3.$2.$1", m) == "25.01.2000"

    def test_whole_match_and_dollar(self) -> None:
        m = self._match(r"\d+", "abc 42")
        assert expand_backrefs("[$&] $$", m) == "[42] $"

    def test_two_digit_fallback(self) -> None:
        m = self._match(r"(a)(b)", "ab")
        assert expand_backrefs("$12", m) == "a2"

    def test_unknown_group_kept(self) -> None:
        m = self._match(r"(a)", "a")
        assert expand_backrefs("$5", m) == "$5"

    def test_unmatched_group_empty(self) -> None:
        m = self._match(r"(a)|(b)", "a")
        assert expand_backrefs("<$2>", m) == "<>"
