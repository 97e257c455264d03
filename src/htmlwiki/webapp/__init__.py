"""HTTP adapter for the wiki."""
