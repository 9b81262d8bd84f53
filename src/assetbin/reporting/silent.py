from __future__ import annotations

from .base import Reporter


class SilentReporter(Reporter):
    """Tracks tasks but renders nothing.

    Installed by :func:`get_reporter` until a caller picks another backend, so
    library use stays quiet.
    """
