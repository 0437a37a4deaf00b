"""Geometry Package.

Vector/color algebra, rays, Numba intersection kernels, bounding boxes,
scene primitives (sphere, triangle, plane, triangle mesh) and affine
transforms for the recursive ray tracer.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
