"""
Depth Scanning Module.

Responsibilities:
- Fractional ROI to pixel bound conversion
- Strided little-endian depth decoding
- Close / deep / stair-signature statistics
"""

from .region_scanner import RegionScanner, pixel_bounds, sample_grid
