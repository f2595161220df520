"""Parser for the four-part LTJMM formula.

The formula addresses columns of a long-format dataset::

    y ~ time | 1 + age + sex | subject_id | outcome_id

The first part holds the response and the observation time, the second part
the fixed effects, the third the subject identifier and the last the outcome
identifier. The fixed-effects part supports an explicit intercept (``1``),
intercept removal (``0`` or ``-1``) and additive variable terms. Interactions,
transformations and function calls are not supported.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Tuple

from .exceptions import MalformedFormula

__all__ = ["FormulaSpec", "parse_formula"]

_NAME = re.compile(r"^[A-Za-z_.][A-Za-z0-9_.]*$")
_NO_INTERCEPT = re.compile(r"-\s*1\b")


@dataclass(frozen=True)
class FormulaSpec:
    """Roles resolved from an LTJMM formula."""

    response: str
    time: str
    fixed: Tuple[str, ...]
    intercept: bool
    subject: str
    outcome: str

    @property
    def columns(self) -> List[str]:
        """Every data column referenced by the formula, in role order."""
        cols = [self.response, self.time, *self.fixed, self.subject, self.outcome]
        seen: List[str] = []
        for col in cols:
            if col not in seen:
                seen.append(col)
        return seen

    def __str__(self) -> str:
        terms = list(self.fixed)
        if self.intercept:
            terms.insert(0, "1")
        elif not terms:
            terms = ["0"]
        else:
            terms.append("0")
        return (
            f"{self.response} ~ {self.time} | {' + '.join(terms)} | "
            f"{self.subject} | {self.outcome}"
        )


def parse_formula(text: str) -> FormulaSpec:
    """Parse ``response ~ time | fixed | subject | outcome`` into a :class:`FormulaSpec`.

    Raises
    ------
    MalformedFormula
        If the text does not split into exactly four ``|``-separated parts,
        the first part lacks a single ``~``, or a role is empty or not a
        plain variable name.
    """
    if not isinstance(text, str) or not text.strip():
        raise MalformedFormula("formula must be a non-empty string")

    parts = [p.strip() for p in text.split("|")]
    if len(parts) != 4:
        raise MalformedFormula(
            f"formula must have 4 '|'-separated parts "
            f"(y ~ time | fixed | subject | outcome), got {len(parts)}: {text!r}"
        )
    head, fixed_part, subject, outcome = parts

    if head.count("~") != 1:
        raise MalformedFormula(f"first part must be 'response ~ time', got {head!r}")
    response, time = (s.strip() for s in head.split("~"))

    fixed, intercept = _parse_fixed(fixed_part)
    return FormulaSpec(
        response=_variable(response, "response"),
        time=_variable(time, "time"),
        fixed=fixed,
        intercept=intercept,
        subject=_variable(subject, "subject"),
        outcome=_variable(outcome, "outcome"),
    )


def _variable(token: str, role: str) -> str:
    if not token:
        raise MalformedFormula(f"{role} variable is empty")
    if not _NAME.match(token):
        raise MalformedFormula(f"{role} must be a single variable name, got {token!r}")
    return token


def _parse_fixed(part: str) -> Tuple[Tuple[str, ...], bool]:
    if not part:
        raise MalformedFormula("fixed effects part is empty (use '1' for intercept only)")

    intercept = True
    stripped, removed = _NO_INTERCEPT.subn("", part)
    if removed:
        intercept = False

    terms: List[str] = []
    for raw in stripped.split("+"):
        term = raw.strip()
        if not term:
            if removed:
                continue
            raise MalformedFormula(f"empty term in fixed effects {part!r}")
        if term == "1":
            continue
        if term == "0":
            intercept = False
        elif term not in terms:
            terms.append(_variable(term, "fixed effect term"))

    if not terms and not intercept:
        raise MalformedFormula(f"fixed effects {part!r} contain neither intercept nor terms")
    return tuple(terms), intercept
