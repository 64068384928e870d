"""
Content Dates - git-derived modification and publication times for content files.

Walks version-control history once, caches the raw log under the metadata
directory and answers point lookups for the rendering pipeline.
"""

__version__ = "1.0.0"
