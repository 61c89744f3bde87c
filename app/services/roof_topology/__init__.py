"""
Roof topology inference

Turns a building footprint (plus optional vendor roof segments, a DSM raster
and a traced ridge) into classified roof lines and pitched facets:

- footprint preprocessing (soffit offset) and shape classification
- shape-keyed approximate skeleton (ridges, hips, valleys) with validation
- eave/rake boundary classification
- segment-metadata topology, DSM refinement and facet splitting

Everything here is synchronous and side-effect free.
"""

from .config import TopologyConfig
from .engine import RoofTopologyEngine, infer_topology
from .boundary import BoundaryClassifier, classify_boundary_edges

__all__ = ["TopologyConfig", "RoofTopologyEngine", "infer_topology", "BoundaryClassifier", "classify_boundary_edges"]
