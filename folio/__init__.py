"""folio: asynchronous document parsing and resumable page embedding."""

__version__ = "0.1.0"
