"""Mirror an Apache-style HTTP directory listing into a local directory."""

__version__ = "0.1.0"
