"""Small, side-effect free helpers shared by the directory, report and mail layers.

Keep this package dependency-light to avoid circular imports.
"""

from .numbers import clamp_int  # noqa: F401
from .dn import dn_parent  # noqa: F401
