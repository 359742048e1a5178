"""Pipeline activities.

Each activity performs a single unit of work within a run:
- prepare_aoi: Load and project the area of interest
- estimate_threshold: Otsu threshold from a value histogram
- classify_water: Per-sensor water classification
- cleanup_mask: Small-object removal and morphological smoothing
- vectorize_shoreline: Boundary tracing, coastal filter, AOI clip
- export_products: Write shoreline vectors and water mask rasters
"""
