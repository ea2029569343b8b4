"""worktrack: work-item lifecycle and client approval workflow engine."""

__version__ = "0.1.0"
