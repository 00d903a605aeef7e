"""
Query building package.

Pure functions that turn raw request parameters into the values the
read path needs:

- filters: typed filter dimensions and the canonical FilterCriteria.
- pagination: page/limit clamping and sort allowlist resolution.
- cache_keys: deterministic cache keys per namespace.

Nothing here performs I/O; the same input always yields the same output.
"""
