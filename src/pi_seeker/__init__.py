"""pi-seeker: find where a digit string first appears in pi."""

__version__ = "0.1.0"
