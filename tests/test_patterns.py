from __future__ import annotations

from core.patterns import compile_filter, compile_glob, filter_allows


def test_prefix_glob_is_anchored() -> None:
    pattern = compile_glob("web-*")
    assert pattern.match("web-01")
    assert not pattern.match("api-web-01")


def test_star_matches_any_non_empty_value() -> None:
    pattern = compile_glob("*")
    assert pattern.match("db-01")
    assert pattern.match("x")


def test_question_mark_matches_one_character() -> None:
    pattern = compile_glob("db-0?")
    assert pattern.match("db-01")
    assert not pattern.match("db-011")


def test_glob_is_case_insensitive() -> None:
    assert compile_glob("WEB-*").match("web-01")
    assert compile_glob("web-*").match("WEB-01")


def test_regex_characters_are_literal() -> None:
    assert compile_glob("db.prod").match("db.prod")
    assert not compile_glob("db.prod").match("dbxprod")


def test_comma_separated_filter_matches_any_part() -> None:
    assert len(compile_filter("web-*, api-*")) == 2
    assert filter_allows("web-*, api-*", "api-02")
    assert not filter_allows("web-*, api-*", "db-01")


def test_missing_filter_or_value_passes() -> None:
    assert filter_allows(None, "anything")
    assert filter_allows("", "anything")
    assert filter_allows("web-*", None)
