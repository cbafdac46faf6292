"""crossdock: cross-compile a matrix of targets and publish one multi-arch image."""

__version__ = "0.1.0"
