"""BSP trees, polygon faces, collision queries, spring networks and small 6D solvers for 3D geometry."""

__version__ = "0.1.0"