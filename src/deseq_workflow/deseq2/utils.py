from functools import lru_cache

from ..r_env import get_r_environment


@lru_cache(maxsize=1)
def _prep_deseq2():
    """Lazily prepare the DESeq2 runtime.

    Returns:
        Tuple[Rpy2Manager, Any]: A tuple ``(r_env, deseq2_pkg)`` where
        ``r_env`` is the shared rpy2 manager and ``deseq2_pkg`` is the
        imported R ``DESeq2`` package.

    Notes:
        The result is cached (LRU) to avoid repeated imports.
    """
    r = get_r_environment()
    deseq2_pkg = r.lazy_import_r_packages("DESeq2")
    return r, deseq2_pkg


def r_column(r, frame, name):
    """Extract column ``name`` of an R DataFrame-like object."""
    return r.call("[[", frame, name)
