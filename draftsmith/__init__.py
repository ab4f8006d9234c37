"""draftsmith: style-aware article drafting assistant."""

__version__ = "0.1.0"
