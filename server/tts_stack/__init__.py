"""Text-to-speech API shim and deployment tooling."""

__version__ = "0.3.0"
