"""
INDIGO: natural-language command engine for issue trackers.

A generative model proposes operations; Indigo parses them, resolves
fuzzy references against tracker catalogs, validates field values and
drives the plan-execute-reflect loop until the goal is done.
"""

from indigo.identity import __codename__, __tagline__, __version__

__all__ = ["__codename__", "__tagline__", "__version__"]
