"""CoreFlow: candidate pipeline, email workflows and offer negotiation."""

__version__ = "0.1.0"
