"""
Lazy rpy2 environment, R package management and conversion helpers.

Nothing in this module touches R at import time. The first call to
``get_r_environment()`` imports rpy2 and starts the embedded R session;
``ensure_r_dependencies`` installs missing Bioconductor packages on demand.

Usage:
    >>> from deseq_workflow.r_env import get_r_environment, ensure_r_dependencies
    >>> ensure_r_dependencies(["DESeq2"])
    >>> r = get_r_environment()
    >>> deseq2 = r.lazy_import_r_packages("DESeq2")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# Track which packages have been checked
_checked_packages: set = set()


class Rpy2Manager:
    """Process-wide holder of the rpy2 handles used by the R-backed modules."""

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        try:
            import rpy2.robjects as ro
            from rpy2.robjects import default_converter, pandas2ri
            from rpy2.robjects.conversion import get_conversion, localconverter
            from rpy2.robjects.packages import importr
        except ImportError as err:
            raise ImportError(
                "rpy2 is not installed. Please install it via 'pip install rpy2' "
                "and make sure R is available on PATH."
            ) from err

        self._ro = ro
        self._importr = importr
        self._localconverter = localconverter
        self._get_conversion = get_conversion
        self._default_converter = default_converter
        self._pandas2ri = pandas2ri
        self._packages: Dict[str, Any] = {}
        self._initialized = True
        logger.debug("rpy2 components initialized")

    @property
    def ro(self) -> Any:
        return self._ro

    @property
    def IntVector(self) -> Any:
        return self._ro.IntVector

    @property
    def FloatVector(self) -> Any:
        return self._ro.FloatVector

    @property
    def StrVector(self) -> Any:
        return self._ro.StrVector

    @property
    def Formula(self) -> Any:
        return self._ro.Formula

    @property
    def localconverter(self) -> Any:
        return self._localconverter

    @property
    def default_converter(self) -> Any:
        return self._default_converter

    @property
    def pandas2ri(self) -> Any:
        return self._pandas2ri

    def get_conversion(self) -> Any:
        return self._get_conversion()

    def lazy_import_r_packages(self, name: str) -> Any:
        """Import (and cache) an R package namespace via ``importr``."""
        if name not in self._packages:
            self._packages[name] = self._importr(name)
        return self._packages[name]

    def call(self, fn_name: str, *args: Any, **kwargs: Any) -> Any:
        """Call an R function by name from the search path."""
        return self._ro.r[fn_name](*args, **kwargs)

    def is_null(self, obj: Any) -> bool:
        return obj is self._ro.NULL or bool(self.call("is.null", obj)[0])


def get_r_environment() -> Rpy2Manager:
    """Return the shared rpy2 manager, initializing rpy2 on first use."""
    return Rpy2Manager()


def ensure_r_dependencies(packages: Sequence[str]) -> None:
    """
    Checks if required R packages are installed.
    If not, attempts to install them using BiocManager via rpy2.

    Args:
        packages: Sequence of R package names to check/install.
            e.g., ["DESeq2"], ["biomaRt"]

    Raises:
        ImportError: If rpy2 is not installed.
    """
    packages_to_check = [pkg for pkg in packages if pkg not in _checked_packages]
    if not packages_to_check:
        return

    try:
        import rpy2.robjects.packages as rpackages
        from rpy2.robjects.vectors import StrVector
    except ImportError as err:
        raise ImportError(
            "rpy2 is not installed. Please install it via 'pip install rpy2' "
            "and make sure R is available on PATH."
        ) from err

    missing_pkgs = [pkg for pkg in packages_to_check if not rpackages.isinstalled(pkg)]

    if missing_pkgs:
        logger.info("Missing R packages detected: %s", ", ".join(missing_pkgs))
        logger.info("Attempting to install via BiocManager...")

        utils = rpackages.importr("utils")
        utils.chooseCRANmirror(ind=1)

        if not rpackages.isinstalled("BiocManager"):
            utils.install_packages(StrVector(["BiocManager"]))

        bioc_manager = rpackages.importr("BiocManager")
        bioc_manager.install(StrVector(missing_pkgs), ask=False)

        still_missing = [pkg for pkg in missing_pkgs if not rpackages.isinstalled(pkg)]
        if still_missing:
            raise ImportError(
                f"R packages could not be installed: {', '.join(still_missing)}"
            )
        logger.info("R packages installed successfully.")

    _checked_packages.update(packages_to_check)


def is_r_package_available(name: str) -> bool:
    """True when rpy2 imports and the R package ``name`` is installed."""
    try:
        import rpy2.robjects.packages as rpackages
    except ImportError:
        return False
    try:
        return bool(rpackages.isinstalled(name))
    except Exception:  # R itself failed to start
        logger.debug("R could not be initialized", exc_info=True)
        return False


# =============================================================================
# Conversions
# =============================================================================

def int_matrix_to_r(
    values: np.ndarray,
    row_names: Sequence[str],
    col_names: Sequence[str],
) -> Any:
    """Convert a 2D integer array to an R integer matrix with dimnames."""
    r = get_r_environment()
    arr = np.asarray(values)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 2D array, got {arr.ndim} dimensions")
    flat = r.IntVector([int(v) for v in arr.ravel(order="F")])
    dimnames = r.call(
        "list",
        r.StrVector([str(x) for x in row_names]),
        r.StrVector([str(x) for x in col_names]),
    )
    return r.call("matrix", flat, nrow=arr.shape[0], ncol=arr.shape[1], dimnames=dimnames)


def factor_frame_to_r(
    frame: pd.DataFrame,
    levels: Mapping[str, Sequence[str]],
) -> Any:
    """
    Convert sample metadata to an R ``data.frame``.

    Columns named in ``levels`` become R factors with exactly that level
    order; every other column is passed as character.
    """
    r = get_r_environment()
    columns = {}
    for col in frame.columns:
        values = r.StrVector([str(v) for v in frame[col]])
        if col in levels:
            columns[str(col)] = r.call(
                "factor", values, levels=r.StrVector([str(lv) for lv in levels[col]])
            )
        else:
            columns[str(col)] = values
    rdf = r.ro.DataFrame(columns)
    return r.call("rownames<-", rdf, r.StrVector([str(i) for i in frame.index]))


def r_strings(vec: Any) -> Optional[list]:
    """R character vector (or NULL) to a list of str."""
    r = get_r_environment()
    if r.is_null(vec):
        return None
    return [str(x) for x in vec]


def r_vector_to_numpy(vec: Any) -> np.ndarray:
    """R numeric vector to a 1D float array; NA becomes NaN."""
    return np.fromiter((float(x) for x in vec), dtype=float, count=len(vec))


def r_matrix_to_frame(
    mat: Any,
    index: Optional[Sequence[str]] = None,
    columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """R numeric matrix to a float DataFrame, using R dimnames when not given."""
    r = get_r_environment()
    dims = [int(x) for x in r.call("dim", mat)]
    values = r_vector_to_numpy(r.call("as.vector", mat)).reshape(dims, order="F")
    if index is None:
        index = r_strings(r.call("rownames", mat))
    if columns is None:
        columns = r_strings(r.call("colnames", mat))
    return pd.DataFrame(values, index=index, columns=columns)


def r_frame_to_pandas(rdf: Any) -> pd.DataFrame:
    """R ``data.frame`` to pandas via the pandas2ri converter."""
    r = get_r_environment()
    with r.localconverter(r.default_converter + r.pandas2ri.converter):
        return r.get_conversion().rpy2py(rdf)
