"""Shoreline extraction from satellite imagery.

Classifies radar, optical or historical multispectral composites into
water and land, cleans the resulting mask, and traces the water boundary
into coastal shoreline polylines clipped to an area of interest.
"""

__version__ = "0.1.0"
