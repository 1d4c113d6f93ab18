"""
ATLAS ANALYSIS - Intelligence overlays for the selected entity.
"""

from analysis.overlays import (
    Finding,
    OverlayReport,
    analyze_layer,
    compute_overlays,
    contributor_role,
)
