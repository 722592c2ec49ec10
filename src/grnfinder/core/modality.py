"""
Core data structure for one single-cell measurement modality.

Modality unifies a feature x cell matrix (RNA counts, ATAC fragment counts)
with feature annotations (gene names, peak coordinates) and cell annotations
(cluster, sample, metacell group).

Biological Context:
    A multiome experiment measures two modalities on the same cells:
    - RNA: rows = genes, values = normalized expression
    - ATAC: rows = peaks (accessible regions), values = accessibility

    GRN inference combines both, so cell identifiers of the two modalities
    must line up exactly. Matrices are usually sparse (most genes are not
    detected in most cells), so scipy.sparse matrices are accepted as-is.

Engineering Design:
    - Immutable: Operations return new instances (functional style)
    - Sparse-aware: dense np.ndarray or any scipy.sparse matrix
    - Validated: Constructor checks shape and index consistency

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from grnfinder.core.modality import Modality
    >>>
    >>> rna = Modality(
    ...     data=np.array([[1.0, 0.0], [2.0, 3.0]]),
    ...     feature_ids=pd.Index(["SOX2", "PAX6"]),
    ...     cell_ids=pd.Index(["cell_1", "cell_2"]),
    ... )
    >>> pax6 = rna.feature_vector("PAX6")
"""

from __future__ import annotations

from typing import Optional, Sequence
import numpy as np
import pandas as pd
from scipy import sparse

__all__ = ['Modality']


class Modality:
    """
    Immutable container for a feature x cell matrix + annotations.

    Attributes:
        data: Measurement matrix (features x cells), dense or scipy.sparse
        feature_ids: Row identifiers (gene names, peak names)
        cell_ids: Column identifiers (cell barcodes)
        feature_metadata: Annotations per feature (index == feature_ids)
        cell_metadata: Annotations per cell (index == cell_ids)

    Shape Invariants:
        - data.shape[0] == len(feature_ids)
        - data.shape[1] == len(cell_ids)
        - feature_metadata.index equals feature_ids
        - cell_metadata.index equals cell_ids
        - feature_ids are unique
    """

    def __init__(
        self,
        data: np.ndarray | sparse.spmatrix,
        feature_ids: pd.Index,
        cell_ids: pd.Index,
        feature_metadata: Optional[pd.DataFrame] = None,
        cell_metadata: Optional[pd.DataFrame] = None,
        name: str = "modality",
    ):
        """
        Initialize Modality with validation.

        Args:
            data: Matrix (features x cells). Sparse input is converted to CSR.
            feature_ids: Row identifiers, must be unique
            cell_ids: Column identifiers
            feature_metadata: Optional DataFrame indexed by feature_ids
            cell_metadata: Optional DataFrame indexed by cell_ids
            name: Label used in log messages and reprs ("rna", "atac")

        Raises:
            TypeError: If data or indices have the wrong type
            ValueError: If shapes or indices are inconsistent
        """
        if sparse.issparse(data):
            data = sparse.csr_matrix(data, dtype=np.float64)
        elif isinstance(data, np.ndarray):
            data = np.asarray(data, dtype=np.float64)
        else:
            raise TypeError(f"data must be np.ndarray or scipy.sparse matrix, got {type(data)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(cell_ids, pd.Index):
            raise TypeError(f"cell_ids must be pd.Index, got {type(cell_ids)}")

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")

        n_features, n_cells = data.shape
        if len(feature_ids) != n_features:
            raise ValueError(
                f"feature_ids length ({len(feature_ids)}) must match data rows ({n_features})"
            )
        if len(cell_ids) != n_cells:
            raise ValueError(
                f"cell_ids length ({len(cell_ids)}) must match data columns ({n_cells})"
            )
        if not feature_ids.is_unique:
            dupes = feature_ids[feature_ids.duplicated()].unique().tolist()
            raise ValueError(f"feature_ids must be unique, duplicated: {dupes[:10]}")

        if feature_metadata is None:
            feature_metadata = pd.DataFrame(index=feature_ids)
        if cell_metadata is None:
            cell_metadata = pd.DataFrame(index=cell_ids)
        if not isinstance(feature_metadata, pd.DataFrame):
            raise TypeError(f"feature_metadata must be pd.DataFrame, got {type(feature_metadata)}")
        if not isinstance(cell_metadata, pd.DataFrame):
            raise TypeError(f"cell_metadata must be pd.DataFrame, got {type(cell_metadata)}")
        if not feature_metadata.index.equals(feature_ids):
            raise ValueError("feature_metadata.index must match feature_ids exactly")
        if not cell_metadata.index.equals(cell_ids):
            raise ValueError("cell_metadata.index must match cell_ids exactly")

        self._data = data
        self._feature_ids = feature_ids
        self._cell_ids = cell_ids
        self._feature_metadata = feature_metadata
        self._cell_metadata = cell_metadata
        self._name = name

    @property
    def data(self) -> np.ndarray | sparse.csr_matrix:
        """Measurement matrix (features x cells)."""
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def cell_ids(self) -> pd.Index:
        return self._cell_ids

    @property
    def feature_metadata(self) -> pd.DataFrame:
        return self._feature_metadata

    @property
    def cell_metadata(self) -> pd.DataFrame:
        return self._cell_metadata

    @property
    def name(self) -> str:
        return self._name

    @property
    def shape(self) -> tuple[int, int]:
        return self._data.shape

    @property
    def n_features(self) -> int:
        return self._data.shape[0]

    @property
    def n_cells(self) -> int:
        return self._data.shape[1]

    @property
    def is_sparse(self) -> bool:
        return sparse.issparse(self._data)

    def has_feature(self, feature_id: str) -> bool:
        return feature_id in self._feature_ids

    def feature_vector(self, feature_id: str) -> np.ndarray:
        """
        Dense 1-D vector of one feature across all cells.

        Raises:
            KeyError: If feature_id is not present
        """
        idx = self._feature_ids.get_loc(feature_id)
        row = self._data[idx]
        if sparse.issparse(row):
            return np.asarray(row.todense()).ravel()
        return np.asarray(row).ravel()

    def feature_block(self, feature_ids: Sequence[str]) -> np.ndarray:
        """Dense (len(feature_ids) x cells) block for the given features."""
        idx = self._feature_ids.get_indexer(list(feature_ids))
        if (idx < 0).any():
            missing = [f for f, i in zip(feature_ids, idx) if i < 0]
            raise KeyError(f"Features not found in {self._name}: {missing[:10]}")
        block = self._data[idx]
        if sparse.issparse(block):
            return np.asarray(block.todense())
        return np.asarray(block)

    def to_dense(self) -> np.ndarray:
        if sparse.issparse(self._data):
            return np.asarray(self._data.todense())
        return self._data

    def select_features(self, mask: np.ndarray | pd.Series | Sequence[str]) -> Modality:
        """
        Subset by features (rows).

        Args:
            mask: Boolean mask over features, or a list of feature ids
                (returned in the given order)

        Returns:
            New Modality with selected features
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask)

        if mask.dtype == bool:
            if len(mask) != self.n_features:
                raise ValueError(
                    f"mask length ({len(mask)}) must match n_features ({self.n_features})"
                )
            idx = np.flatnonzero(mask)
        else:
            idx = self._feature_ids.get_indexer(mask.tolist())
            if (idx < 0).any():
                raise KeyError(f"Features not found in {self._name}: {mask[idx < 0][:10].tolist()}")

        return Modality(
            data=self._data[idx],
            feature_ids=self._feature_ids[idx],
            cell_ids=self._cell_ids,
            feature_metadata=self._feature_metadata.iloc[idx],
            cell_metadata=self._cell_metadata,
            name=self._name,
        )

    def select_cells(self, mask: np.ndarray | pd.Series) -> Modality:
        """Subset by cells (columns) with a boolean mask."""
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)
        if len(mask) != self.n_cells:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_cells ({self.n_cells})"
            )
        idx = np.flatnonzero(mask)
        return Modality(
            data=self._data[:, idx],
            feature_ids=self._feature_ids,
            cell_ids=self._cell_ids[idx],
            feature_metadata=self._feature_metadata,
            cell_metadata=self._cell_metadata.iloc[idx],
            name=self._name,
        )

    def aggregate(self, groups: str | pd.Series | np.ndarray) -> Modality:
        """
        Average cells within groups ("metacells" / pseudobulk).

        Args:
            groups: Column name in cell_metadata, or one label per cell

        Returns:
            New dense Modality with one column per group (sorted labels)
        """
        if isinstance(groups, str):
            if groups not in self._cell_metadata.columns:
                raise KeyError(f"cell_metadata has no column '{groups}'")
            labels = self._cell_metadata[groups].to_numpy()
        else:
            labels = np.asarray(groups)
        if len(labels) != self.n_cells:
            raise ValueError(
                f"groups length ({len(labels)}) must match n_cells ({self.n_cells})"
            )

        codes, uniques = pd.factorize(pd.Series(labels), sort=True)
        n_groups = len(uniques)
        indicator = sparse.csr_matrix(
            (np.ones(len(codes)), (np.arange(len(codes)), codes)),
            shape=(len(codes), n_groups),
        )
        counts = np.asarray(indicator.sum(axis=0)).ravel()
        if sparse.issparse(self._data):
            summed = (self._data @ indicator).toarray()
        else:
            summed = self._data @ indicator.toarray()
        means = summed / counts[np.newaxis, :]

        group_ids = pd.Index([str(u) for u in uniques])
        return Modality(
            data=means,
            feature_ids=self._feature_ids,
            cell_ids=group_ids,
            feature_metadata=self._feature_metadata,
            cell_metadata=pd.DataFrame({'n_cells': counts.astype(int)}, index=group_ids),
            name=self._name,
        )

    def copy(self, deep: bool = True) -> Modality:
        if deep:
            return Modality(
                data=self._data.copy(),
                feature_ids=self._feature_ids.copy(),
                cell_ids=self._cell_ids.copy(),
                feature_metadata=self._feature_metadata.copy(),
                cell_metadata=self._cell_metadata.copy(),
                name=self._name,
            )
        return Modality(
            data=self._data,
            feature_ids=self._feature_ids,
            cell_ids=self._cell_ids,
            feature_metadata=self._feature_metadata,
            cell_metadata=self._cell_metadata,
            name=self._name,
        )

    def __repr__(self) -> str:
        kind = "sparse" if self.is_sparse else "dense"
        first = self.feature_ids[0] if self.n_features else "-"
        last = self.feature_ids[-1] if self.n_features else "-"
        return (
            f"Modality '{self._name}' ({self.n_features} features × {self.n_cells} cells, {kind})\n"
            f"  Features: {first}...{last}\n"
            f"  Cell metadata columns: {list(self.cell_metadata.columns)}"
        )

    def __str__(self) -> str:
        return self.__repr__()
