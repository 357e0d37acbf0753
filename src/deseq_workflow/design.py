"""
Categorical model designs with explicit reference levels.

A ``Design`` is an ordered list of categorical factors, each with an
explicit level order whose first level is the reference, plus an optional
set of pairwise interaction terms. It renders the R formula handed to
DESeq2, predicts DESeq2's coefficient names, resolves the model matrix
for a sample table and builds contrast vectors over the coefficients.

Coefficient layout (treatment coding):
    [Intercept | A non-reference levels | B non-reference levels | A:B ...]

Interaction columns vary the first factor fastest, as R's ``model.matrix``
does. Names follow DESeq2: ``Status_pregnant_vs_virgin`` for main effects
and ``CellTypeluminal.Statuspregnant`` for interactions.

Example:
    >>> design = make_design({"CellType": ["basal", "luminal"],
    ...                       "Status": ["virgin", "pregnant", "lactate"]})
    >>> design.formula
    '~CellType + Status'
    >>> design.contrast_vector("Status", "lactate", "pregnant")
    array([ 0.,  0., -1.,  1.])
"""

from __future__ import annotations

import itertools
import re
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InputMismatch, InvalidContrast

INTERCEPT = "Intercept"

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9._]")


def make_r_name(name: str) -> str:
    """Sanitise a string the way R's ``make.names`` does."""
    out = _INVALID_NAME_CHARS.sub(".", name)
    if not out or not (out[0].isalpha() or (out[0] == "." and not out[1:2].isdigit())):
        out = "X" + out
    return out


@dataclass(frozen=True)
class Factor:
    """A categorical design variable. ``levels[0]`` is the reference."""

    name: str
    levels: Tuple[str, ...]

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.isidentifier():
            raise ValueError(f"Factor name must be a valid identifier, got {self.name!r}")
        if isinstance(self.levels, str):
            raise TypeError("Factor levels must be a sequence of strings, not a string")
        levels = tuple(str(lv) for lv in self.levels)
        if len(levels) < 2:
            raise ValueError(f"Factor {self.name!r} needs at least two levels, got {levels}")
        if len(set(levels)) != len(levels):
            raise ValueError(f"Factor {self.name!r} has duplicated levels: {levels}")
        object.__setattr__(self, "levels", levels)

    @property
    def reference(self) -> str:
        return self.levels[0]

    def relevel(self, reference: str) -> "Factor":
        """Return a copy with ``reference`` moved to the front."""
        if reference not in self.levels:
            raise InvalidContrast(f"Level {reference!r} is not a level of factor {self.name!r}")
        rest = tuple(lv for lv in self.levels if lv != reference)
        return Factor(self.name, (reference,) + rest)


# One model-matrix column: name plus the (factor, level) indicators it multiplies.
_Term = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass(frozen=True)
class Design:
    """
    Ordered categorical factors with optional pairwise interactions.

    Attributes:
        factors: Factors in formula order.
        interaction: If True, every pairwise interaction term is included.
    """

    factors: Tuple[Factor, ...]
    interaction: bool = False

    def __post_init__(self):
        factors = tuple(self.factors)
        if not factors:
            raise ValueError("A design needs at least one factor")
        for f in factors:
            if not isinstance(f, Factor):
                raise TypeError(f"Expected Factor, got {type(f).__name__}")
        names = [f.name for f in factors]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicated factor names in design: {names}")
        if self.interaction and len(factors) < 2:
            raise ValueError("An interaction needs at least two factors")
        object.__setattr__(self, "factors", factors)

    # ------------------------------------------------------------------
    # Symbolic description
    # ------------------------------------------------------------------

    @property
    def factor_names(self) -> List[str]:
        return [f.name for f in self.factors]

    @property
    def levels(self) -> Dict[str, Tuple[str, ...]]:
        return {f.name: f.levels for f in self.factors}

    def factor(self, name: str) -> Factor:
        for f in self.factors:
            if f.name == name:
                return f
        raise InvalidContrast(f"Factor {name!r} is not part of the design {self.formula}")

    def _pairs(self) -> List[Tuple[Factor, Factor]]:
        if not self.interaction:
            return []
        return list(itertools.combinations(self.factors, 2))

    @property
    def formula(self) -> str:
        terms = self.factor_names + [f"{a.name}:{b.name}" for a, b in self._pairs()]
        return "~" + " + ".join(terms)

    def _terms(self) -> Iterator[_Term]:
        yield INTERCEPT, ()
        for f in self.factors:
            for lv in f.levels[1:]:
                yield make_r_name(f"{f.name}_{lv}_vs_{f.reference}"), ((f.name, lv),)
        for a, b in self._pairs():
            for lb in b.levels[1:]:
                for la in a.levels[1:]:
                    name = make_r_name(f"{a.name}{la}:{b.name}{lb}")
                    yield name, ((a.name, la), (b.name, lb))

    @property
    def coefficient_names(self) -> List[str]:
        return [name for name, _ in self._terms()]

    @property
    def n_coefficients(self) -> int:
        return len(self.coefficient_names)

    def coefficient_index(self, name: str) -> int:
        names = self.coefficient_names
        if name not in names:
            raise InvalidContrast(
                f"Coefficient {name!r} not found in design {self.formula}. "
                f"Available: {names}"
            )
        return names.index(name)

    # ------------------------------------------------------------------
    # Model matrix
    # ------------------------------------------------------------------

    def check_sample_info(self, sample_info: pd.DataFrame) -> None:
        """Raise InputMismatch if the metadata cannot be encoded by this design."""
        for f in self.factors:
            if f.name not in sample_info.columns:
                raise InputMismatch(
                    f"Design factor {f.name!r} is not a column of the sample metadata "
                    f"(columns: {list(sample_info.columns)})"
                )
            values = sample_info[f.name].astype(str)
            unknown = sorted(set(values) - set(f.levels))
            if unknown:
                raise InputMismatch(
                    f"Sample metadata column {f.name!r} has values {unknown} "
                    f"outside the declared levels {list(f.levels)}"
                )

    def model_matrix(self, sample_info: pd.DataFrame) -> pd.DataFrame:
        """
        Resolve the design to a samples x coefficients matrix.

        Raises:
            InputMismatch: Missing factor column or undeclared level values.
            ValueError: If the matrix is not of full column rank (e.g. a
                declared level has no samples).
        """
        self.check_sample_info(sample_info)
        n = len(sample_info)
        indicators = {
            f.name: {lv: (sample_info[f.name].astype(str) == lv).to_numpy(dtype=float)
                     for lv in f.levels}
            for f in self.factors
        }
        columns = []
        for _, parts in self._terms():
            col = np.ones(n)
            for fname, lv in parts:
                col = col * indicators[fname][lv]
            columns.append(col)
        mat = np.column_stack(columns)
        rank = np.linalg.matrix_rank(mat)
        if rank < mat.shape[1]:
            raise ValueError(
                f"Model matrix for {self.formula} is not full rank "
                f"(rank {rank} < {mat.shape[1]} coefficients); "
                "check for levels without samples or confounded factors"
            )
        return pd.DataFrame(mat, index=sample_info.index, columns=self.coefficient_names)

    # ------------------------------------------------------------------
    # Contrasts
    # ------------------------------------------------------------------

    def coefficient_vector(self, name: str) -> np.ndarray:
        vec = np.zeros(self.n_coefficients)
        vec[self.coefficient_index(name)] = 1.0
        return vec

    def contrast_vector(
        self,
        factor: str,
        numerator: str,
        denominator: str,
        at: Optional[Mapping[str, str]] = None,
    ) -> np.ndarray:
        """
        Linear combination of coefficients for ``numerator`` vs ``denominator``.

        The reference level has no coefficient of its own, so comparisons
        between two non-reference levels become a difference of two
        coefficients. In designs with interactions the comparison is made
        at the reference level of the other factors unless ``at`` names
        another level for them.

        Args:
            factor: Factor whose levels are compared.
            numerator: Level in the numerator of the fold change.
            denominator: Level in the denominator (the baseline).
            at: Optional ``{other_factor: level}`` at which to evaluate the
                comparison when interaction terms are present.

        Returns:
            1D array of length ``n_coefficients``.

        Raises:
            InvalidContrast: Unknown factor or level, or identical levels.
        """
        f = self.factor(factor)
        for lv in (numerator, denominator):
            if lv not in f.levels:
                raise InvalidContrast(
                    f"Level {lv!r} is not a level of factor {factor!r} ({list(f.levels)})"
                )
        if numerator == denominator:
            raise InvalidContrast(f"Contrast compares level {numerator!r} with itself")

        at = dict(at or {})
        if factor in at:
            raise InvalidContrast(f"`at` cannot fix the contrasted factor {factor!r}")
        for other, lv in at.items():
            if lv not in self.factor(other).levels:
                raise InvalidContrast(f"Level {lv!r} is not a level of factor {other!r}")

        vec = np.zeros(self.n_coefficients)
        for i, (_, parts) in enumerate(self._terms()):
            levels = dict(parts)
            if factor not in levels:
                continue
            others = {k: v for k, v in levels.items() if k != factor}
            if any(at.get(k) != v for k, v in others.items()):
                continue
            if levels[factor] == numerator:
                vec[i] += 1.0
            elif levels[factor] == denominator:
                vec[i] -= 1.0
        return vec

    # ------------------------------------------------------------------
    # Derivation and comparison
    # ------------------------------------------------------------------

    def relevel(self, factor: str, reference: str) -> "Design":
        """Return a new design with ``reference`` as the first level of ``factor``."""
        self.factor(factor)
        factors = tuple(f.relevel(reference) if f.name == factor else f for f in self.factors)
        return replace(self, factors=factors)

    def is_nested_in(self, other: "Design") -> bool:
        """True if this design's coefficients are a strict subset of ``other``'s."""
        other_levels = other.levels
        for f in self.factors:
            if f.name in other_levels and other_levels[f.name] != f.levels:
                return False
        return set(self.coefficient_names) < set(other.coefficient_names)


def make_design(
    factors: Mapping[str, Sequence[str]],
    interaction: bool = False,
) -> Design:
    """Build a Design from an ordered ``{factor: levels}`` mapping."""
    return Design(
        factors=tuple(Factor(name, tuple(levels)) for name, levels in factors.items()),
        interaction=interaction,
    )
