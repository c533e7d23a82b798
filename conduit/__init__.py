"""conduit: a resilient outbound API invocation pipeline."""

__version__ = "0.1.0"
