"""Pipeline sequencing module.

This module handles:
- The ordered stage list and per-run context
- Running one or several architecture pipelines
- Run and stage records in the ledger
"""

from nvim_crossbuild.pipeline.models import RunRecord, StageRecord

__all__ = ["RunRecord", "StageRecord"]

# Lazy imports for submodules to avoid circular imports
# Access via nvim_crossbuild.pipeline.service, etc.
