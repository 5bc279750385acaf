"""Clinical Note & Coding Assistant - transcript to draft clinical documentation."""

__version__ = "0.1.0"
