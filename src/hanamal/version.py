"""Version tracking.

``__version__`` is the package release. ``REGISTRY_SCHEMA_VERSION`` tracks
the on-disk layout of the image registry document, NOT the package.

Bump rules for the schema:
- Bump when a field is renamed or its meaning changes, so older documents
  can be recognised on load.
- Adding an optional field with a default does not need a bump.
"""

__version__ = "0.1.0"

REGISTRY_SCHEMA_VERSION = 2
