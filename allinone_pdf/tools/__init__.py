from __future__ import annotations

# Import tool modules to populate the registry on package load
from . import organize, convert, edit  # noqa: F401
