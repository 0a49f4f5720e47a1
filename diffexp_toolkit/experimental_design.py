"""
Experimental Design Module for Differential Expression Toolkit

Containers for the inputs of one analysis run: the features x samples
intensity matrix, the sample -> group assignment, and the contrasts
(signed combinations of group labels) to be tested.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .validation import ConfigInconsistentError, SampleMatchingError

# Name used for the joint "all group means equal" hypothesis
OMNIBUS = "omnibus"


class IntensityMatrix:
    """
    Features (rows) x samples (columns) matrix of real-valued intensities.

    Feature and sample identifiers must be unique strings. The wrapped
    DataFrame is copied on the way in and on the way out, so a matrix is
    never modified after construction.
    """

    def __init__(self, data: pd.DataFrame):
        if not isinstance(data, pd.DataFrame):
            raise TypeError("IntensityMatrix requires a pandas DataFrame")

        data = data.copy()
        data.index = data.index.map(str)
        data.columns = data.columns.map(str)

        if data.index.has_duplicates:
            dupes = data.index[data.index.duplicated()].unique().tolist()
            raise ValueError(f"Duplicate feature identifiers: {dupes[:5]}")
        if data.columns.has_duplicates:
            dupes = data.columns[data.columns.duplicated()].unique().tolist()
            raise ValueError(f"Duplicate sample identifiers: {dupes[:5]}")

        non_numeric = [c for c in data.columns if not pd.api.types.is_numeric_dtype(data[c])]
        if non_numeric:
            raise ValueError(f"Non-numeric sample columns: {non_numeric[:5]}")

        self._data = data.astype(float)

    @property
    def data(self) -> pd.DataFrame:
        return self._data.copy()

    @property
    def feature_ids(self) -> List[str]:
        return list(self._data.index)

    @property
    def sample_ids(self) -> List[str]:
        return list(self._data.columns)

    @property
    def values(self) -> np.ndarray:
        return self._data.to_numpy(copy=True)

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    def row(self, feature_id: str) -> pd.Series:
        return self._data.loc[feature_id].copy()

    def subset(self, feature_ids: Iterable[str]) -> "IntensityMatrix":
        return IntensityMatrix(self._data.loc[list(feature_ids)])

    def has_missing(self) -> bool:
        return bool(self._data.isna().any().any())

    def __len__(self):
        return len(self._data)

    def __repr__(self):
        n_features, n_samples = self._data.shape
        return f"IntensityMatrix({n_features} features x {n_samples} samples)"


class GroupAssignment:
    """
    Total mapping from sample identifier to group label.

    Group order is the order of first appearance unless ``group_order`` is
    given; it controls column order in result tables and plots.
    """

    def __init__(self, mapping: Mapping[str, str], group_order: Optional[Sequence[str]] = None):
        if not mapping:
            raise ValueError("Group assignment is empty")

        self._mapping = {str(sample): str(label) for sample, label in mapping.items()}

        seen = list(dict.fromkeys(self._mapping.values()))
        if group_order is not None:
            order = [str(g) for g in group_order]
            missing = [g for g in seen if g not in order]
            if missing:
                raise ConfigInconsistentError(
                    f"group_order is missing labels present in the assignment: {missing}"
                )
            self._groups = [g for g in order if g in seen]
        else:
            self._groups = seen

    @classmethod
    def from_mapping(cls, mapping, group_order=None):
        return cls(mapping, group_order=group_order)

    @classmethod
    def from_column_ranges(cls, ranges, sample_ids, group_order=None):
        """
        Build an assignment from sample column index blocks.

        Parameters:
        -----------
        ranges : dict
            Group label -> ``range`` or ``(start, stop)`` over ``sample_ids``
            (0-based, stop exclusive). Blocks need not be contiguous with
            each other but must not overlap.
        sample_ids : list of str
            Sample identifiers in column order

        Returns:
        --------
        GroupAssignment
        """
        sample_ids = list(sample_ids)
        mapping = {}
        for label, block in ranges.items():
            if not isinstance(block, range):
                start, stop = block
                block = range(start, stop)
            for idx in block:
                if idx < 0 or idx >= len(sample_ids):
                    raise ConfigInconsistentError(
                        f"Column index {idx} for group '{label}' is outside the "
                        f"{len(sample_ids)} sample columns"
                    )
                sample = sample_ids[idx]
                if sample in mapping:
                    raise ConfigInconsistentError(
                        f"Sample '{sample}' is assigned to both '{mapping[sample]}' and '{label}'"
                    )
                mapping[sample] = label
        return cls(mapping, group_order=group_order or list(ranges.keys()))

    @classmethod
    def from_metadata(cls, metadata: pd.DataFrame, sample_column: str, group_column: str,
                      group_order=None):
        missing_cols = [c for c in (sample_column, group_column) if c not in metadata.columns]
        if missing_cols:
            raise ValueError(f"Missing required metadata columns: {missing_cols}")

        clean = metadata.dropna(subset=[sample_column, group_column])
        mapping = dict(zip(clean[sample_column].astype(str), clean[group_column].astype(str)))
        return cls(mapping, group_order=group_order)

    @property
    def groups(self) -> List[str]:
        return list(self._groups)

    @property
    def sample_ids(self) -> List[str]:
        return list(self._mapping)

    def label_of(self, sample_id: str) -> str:
        try:
            return self._mapping[sample_id]
        except KeyError:
            raise SampleMatchingError(f"Sample '{sample_id}' has no group assignment") from None

    def samples_in(self, label: str) -> List[str]:
        return [s for s, g in self._mapping.items() if g == label]

    def labels_for(self, sample_ids: Iterable[str]) -> np.ndarray:
        return np.array([self.label_of(s) for s in sample_ids], dtype=object)

    def group_sizes(self) -> Dict[str, int]:
        return {g: len(self.samples_in(g)) for g in self._groups}

    def check_covers(self, matrix: IntensityMatrix) -> None:
        """Raise SampleMatchingError unless every matrix sample has a label."""
        unassigned = [s for s in matrix.sample_ids if s not in self._mapping]
        if unassigned:
            raise SampleMatchingError(
                f"{len(unassigned)} samples in the intensity matrix have no group "
                f"assignment: {unassigned[:5]}{'...' if len(unassigned) > 5 else ''}"
            )

    def restricted_to(self, sample_ids: Iterable[str]) -> "GroupAssignment":
        keep = set(sample_ids)
        mapping = {s: g for s, g in self._mapping.items() if s in keep}
        order = [g for g in self._groups if g in set(mapping.values())]
        return GroupAssignment(mapping, group_order=order)

    def to_series(self) -> pd.Series:
        series = pd.Series(self._mapping, name="Group")
        series.index.name = "Sample"
        return series

    def __contains__(self, sample_id):
        return sample_id in self._mapping

    def __len__(self):
        return len(self._mapping)

    def __repr__(self):
        return f"GroupAssignment({self.group_sizes()})"


@dataclass(frozen=True)
class Contrast:
    """
    Signed linear combination of group means.

    ``coefficients`` maps group label -> weight; weights must sum to zero.
    A pairwise contrast has exactly one +1 and one -1 weight and reads
    "group_a minus group_b".
    """

    name: str
    coefficients: Tuple[Tuple[str, float], ...]

    @classmethod
    def pairwise(cls, group_a, group_b, name=None):
        group_a, group_b = str(group_a), str(group_b)
        if group_a == group_b:
            raise ConfigInconsistentError(f"Contrast compares '{group_a}' with itself")
        return cls(
            name=name or f"{group_a}_vs_{group_b}",
            coefficients=((group_a, 1.0), (group_b, -1.0)),
        )

    @classmethod
    def from_coefficients(cls, coefficients: Mapping[str, float], name=None):
        items = tuple((str(g), float(w)) for g, w in coefficients.items() if w != 0)
        if name is None:
            positive = "+".join(g for g, w in items if w > 0)
            negative = "+".join(g for g, w in items if w < 0)
            name = f"{positive}_vs_{negative}"
        return cls(name=name, coefficients=items)

    @property
    def weights(self) -> Dict[str, float]:
        return dict(self.coefficients)

    @property
    def groups(self) -> List[str]:
        return [g for g, _ in self.coefficients]

    @property
    def is_pairwise(self) -> bool:
        weights = sorted(w for _, w in self.coefficients)
        return weights == [-1.0, 1.0]

    @property
    def group_a(self) -> str:
        if not self.is_pairwise:
            raise ValueError(f"Contrast '{self.name}' is not pairwise")
        return next(g for g, w in self.coefficients if w > 0)

    @property
    def group_b(self) -> str:
        if not self.is_pairwise:
            raise ValueError(f"Contrast '{self.name}' is not pairwise")
        return next(g for g, w in self.coefficients if w < 0)

    def reversed(self) -> "Contrast":
        if self.is_pairwise:
            return Contrast.pairwise(self.group_b, self.group_a)
        return Contrast.from_coefficients({g: -w for g, w in self.coefficients})

    def estimate(self, group_means: Mapping[str, float]) -> float:
        """Apply the contrast weights to a set of group means."""
        return float(sum(w * group_means[g] for g, w in self.coefficients))

    def validate(self, assignment: GroupAssignment) -> None:
        """Raise ConfigInconsistentError if the contrast cannot be evaluated."""
        if len(self.coefficients) < 2:
            raise ConfigInconsistentError(
                f"Contrast '{self.name}' must involve at least two groups"
            )
        total = sum(w for _, w in self.coefficients)
        if not np.isclose(total, 0.0):
            raise ConfigInconsistentError(
                f"Contrast '{self.name}' coefficients sum to {total:g}, expected 0"
            )
        known = set(assignment.groups)
        unknown = [g for g in self.groups if g not in known]
        if unknown:
            raise ConfigInconsistentError(
                f"Contrast '{self.name}' references unknown group labels {unknown}; "
                f"known groups: {assignment.groups}"
            )


ContrastLike = Union[Contrast, Tuple[str, str], str, Mapping[str, float]]


def parse_contrast(value: ContrastLike) -> Contrast:
    """
    Interpret a single contrast specification.

    Accepts a Contrast, a ``(group_a, group_b)`` pair, an ``"group_a-group_b"``
    string, or a ``{group: weight}`` mapping.
    """
    if isinstance(value, Contrast):
        return value
    if isinstance(value, str):
        parts = [p.strip() for p in value.split("-")]
        if len(parts) != 2 or not all(parts):
            raise ConfigInconsistentError(
                f"Cannot parse contrast '{value}'; expected 'groupA-groupB'"
            )
        return Contrast.pairwise(parts[0], parts[1])
    if isinstance(value, Mapping):
        return Contrast.from_coefficients(value)
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return Contrast.pairwise(value[0], value[1])
    raise ConfigInconsistentError(f"Unrecognized contrast specification: {value!r}")


def parse_contrasts(values: Iterable[ContrastLike]) -> List[Contrast]:
    contrasts = [parse_contrast(v) for v in values]
    names = [c.name for c in contrasts]
    duplicated = sorted({n for n in names if names.count(n) > 1})
    if duplicated:
        raise ConfigInconsistentError(f"Duplicate contrast names: {duplicated}")
    return contrasts


def all_pairwise_contrasts(assignment: GroupAssignment) -> List[Contrast]:
    """Every later-vs-earlier pair of groups, in group order."""
    groups = assignment.groups
    return [
        Contrast.pairwise(groups[j], groups[i])
        for i in range(len(groups))
        for j in range(i + 1, len(groups))
    ]
