"""Runtime context for a single maintenance run.

Encapsulates the operator-selected modes that alter what a reconciliation run
is allowed to do without changing any configuration values.  A
:class:`RunContext` is created once by the caller (the CLI, or an admin
handler) and threaded into the reconciler.

Current flags
-------------
dry_run
    Scan the bucket and compute the orphan set exactly as a live run would,
    but **delete nothing** and leave the sweep queue untouched.  The report
    lists the orphans that would have been removed.

:attr:`allows_deletes` is the single property every layer should read:

    >>> RunContext().allows_deletes
    True

    >>> RunContext(dry_run=True).allows_deletes
    False
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

__all__ = ["RunContext"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Immutable container for per-run operating-mode flags.

    Attributes:
        dry_run: When ``True``, orphans are reported instead of deleted.
    """

    dry_run: bool = field(default=False)

    @property
    def allows_deletes(self) -> bool:
        """Return ``True`` if blob deletes and queue drains may happen."""
        return not self.dry_run

    @property
    def mode_label(self) -> str:
        """``"dry-run"`` or ``"live"``, used in log lines."""
        return "dry-run" if self.dry_run else "live"

    def __str__(self) -> str:
        return f"RunContext(mode={self.mode_label})"
