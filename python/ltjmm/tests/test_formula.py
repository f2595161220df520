import pytest

from ltjmm import FormulaSpec, MalformedFormula, parse_formula


def test_parse_formula_recovers_roles():
    parsed = parse_formula("Y ~ year | 1 + age + sex | id | outcome")

    assert parsed.response == "Y"
    assert parsed.time == "year"
    assert parsed.fixed == ("age", "sex")
    assert parsed.intercept is True
    assert parsed.subject == "id"
    assert parsed.outcome == "outcome"
    assert parsed.columns == ["Y", "year", "age", "sex", "id", "outcome"]


def test_parse_formula_intercept_only():
    parsed = parse_formula("Y ~ year | 1 | id | outcome")
    assert parsed.fixed == ()
    assert parsed.intercept is True


def test_parse_formula_implicit_intercept():
    parsed = parse_formula("Y~year|age|id|outcome")
    assert parsed.fixed == ("age",)
    assert parsed.intercept is True


@pytest.mark.parametrize("fixed", ["0 + age", "age - 1", "age + 0", "-1 + age"])
def test_parse_formula_removes_intercept(fixed):
    parsed = parse_formula(f"Y ~ year | {fixed} | id | outcome")
    assert parsed.fixed == ("age",)
    assert parsed.intercept is False


def test_parse_formula_allows_dotted_names():
    parsed = parse_formula("score.z ~ visit.yr | 1 | subject.id | test_name")
    assert parsed.response == "score.z"
    assert parsed.subject == "subject.id"


@pytest.mark.parametrize(
    "text",
    [
        "Y ~ year | 1 | id",
        "Y ~ year | 1 | id | outcome | extra",
        "Y ~ year",
    ],
)
def test_parse_formula_requires_four_parts(text):
    with pytest.raises(MalformedFormula):
        parse_formula(text)


@pytest.mark.parametrize(
    "text",
    [
        "year | 1 | id | outcome",
        "Y ~ ~ year | 1 | id | outcome",
        " ~ year | 1 | id | outcome",
        "Y ~ | 1 | id | outcome",
        "Y ~ year |  | id | outcome",
        "Y ~ year | 1 |  | outcome",
        "Y ~ year | 1 | id | ",
        "Y ~ year | 0 | id | outcome",
        "Y ~ year | age + | id | outcome",
        "Y ~ year | age:sex | id | outcome",
        "Y ~ year | log(age) | id | outcome",
        "Y ~ year | 1 | id + site | outcome",
        "",
    ],
)
def test_parse_formula_rejects_empty_or_unsupported_roles(text):
    with pytest.raises(MalformedFormula):
        parse_formula(text)


def test_formula_spec_str_round_trips():
    parsed = parse_formula("Y ~ year | 1 + age | id | outcome")
    assert parse_formula(str(parsed)) == parsed

    no_intercept = parse_formula("Y ~ year | 0 + sex | id | outcome")
    assert parse_formula(str(no_intercept)) == no_intercept


def test_malformed_formula_is_value_error():
    with pytest.raises(ValueError):
        parse_formula("Y ~ year | 1 | id")
    assert isinstance(parse_formula("Y ~ t | 1 | i | o"), FormulaSpec)
