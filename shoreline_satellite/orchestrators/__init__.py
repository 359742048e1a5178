"""Pipeline orchestration.

Manages the end-to-end workflow for one shoreline run:
1. Build a composite over the expanded AOI
2. Classify water, clean the mask
3. Vectorize, filter to the coast, clip to the AOI
"""
