"""Render Engine Package.

Configuration, materials, scene model, bounding volume hierarchy, optics
and the recursive Whitted-style tracing pipeline.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
