"""Bridge between chat platforms and the iFlow CLI."""

from flowbridge.models import VERSION

__version__ = VERSION
