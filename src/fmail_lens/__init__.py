"""fmail-lens: analytics engine for multi-agent message streams."""

__version__ = "0.1.0"
