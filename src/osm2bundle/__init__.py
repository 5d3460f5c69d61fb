"""osm2bundle: OSM feature extracts to regional bundles and SQLite stores."""

__version__ = "0.1.0"
