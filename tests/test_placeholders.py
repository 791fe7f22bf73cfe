"""Tests for quickfill.placeholders: container scanning and parsing."""
from quickfill.placeholders import (
    find_containers,
    delimiters_balanced,
    is_final,
    parse_container,
    single_variable,
    split_entries,
    strip_containers,
    trim_quotes,
)

TRANSFORM = (
    r'(transform "(\d{4})(\d{2})(\d{2})" "$3.$2.$1" '
    r"(findrule substring personalie.geburtsdatum))"
)


class TestParseContainer:
    def test_variables_and_expression(self) -> None:
        assert parse_container("${a, b, (c)}$") == (("a", "b"), ("(c)",))

    def test_transform_expression_kept_whole(self) -> None:
        variables, expressions = parse_container("${Geburtsdatum, " + TRANSFORM + "}$")
        assert variables == ("Geburtsdatum",)
        assert expressions == (TRANSFORM,)

    def test_empty(self) -> None:
        assert parse_container("${}$") == ((), ())

    def test_single(self) -> None:
        assert parse_container("${a}$") == (("a",), ())

    def test_two_variables(self) -> None:
        assert parse_container("${a, b}$") == (("a", "b"), ())

    def test_expressions_only(self) -> None:
        assert parse_container("${(a)}$") == ((), ("(a)",))
        assert parse_container("${(a),(b)}$") == ((), ("(a)", "(b)"))

    def test_quoted_variables(self) -> None:
        assert parse_container('${"a", "b", ("c")}$') == (("a", "b"), ('("c")',))

    def test_unclosed_expression_dropped(self) -> None:
        assert parse_container("${a, (equal x}$") == (("a",), ())

    def test_body_without_delimiters(self) -> None:
        assert parse_container("yyy, zzz") == (("yyy", "zzz"), ())


class TestSplitEntries:
    def test_commas_in_quotes_and_parens(self) -> None:
        body = r'x, (transform "(\w+),\s*(\w+)" "$2 $1" "Berlinger, Anton")'
        assert split_entries(body) == [
            "x",
            r'(transform "(\w+),\s*(\w+)" "$2 $1" "Berlinger, Anton")',
        ]

    def test_blank_entries_dropped(self) -> None:
        assert split_entries("a,, b ,") == ["a", "b"]


class TestFindContainers:
    def test_offsets(self) -> None:
        containers = find_containers("an ${a}$ mitte ${b}$ ende")
        assert [(c.start, len(c.text), c.variables) for c in containers] == [
            (3, 5, ("a",)),
            (15, 5, ("b",)),
        ]

    def test_embedded_in_text(self) -> None:
        text = "Anfang ${Geburtsdatum, " + TRANSFORM + "}$ Ende"
        (container,) = find_containers(text)
        assert container.start == 7
        assert container.end == len(text) - len(" Ende")
        assert container.variables == ("Geburtsdatum",)
        assert container.expressions == (TRANSFORM,)

    def test_none(self) -> None:
        assert find_containers("plain text") == []

    def test_narrowest_span(self) -> None:
        (container,) = find_containers("${a}$ }$")
        assert container.text == "${a}$"


class TestHelpers:
    def test_is_final(self) -> None:
        assert is_final("Anton")
        assert is_final("${unclosed")
        assert not is_final("Hallo ${name}$")

    def test_single_variable(self) -> None:
        assert single_variable("${vorn}$") == "vorn"
        assert single_variable(" ${vorn}$ ") == "vorn"
        assert single_variable("${a, b}$") is None
        assert single_variable("x ${a}$") is None
        assert single_variable("${(equal a b)}$") is None

    def test_strip_containers(self) -> None:
        assert strip_containers("Abraham ergab ${Promille}$‰.") == "Abraham ergab ‰."

    def test_delimiters_balanced(self) -> None:
        assert delimiters_balanced("${Ort}$")
        assert not delimiters_balanced("${Ort}")
        assert not delimiters_balanced("${Ort")

    def test_trim_quotes(self) -> None:
        assert trim_quotes(' "a b" ') == "a b"
        assert trim_quotes("plain") == "plain"
