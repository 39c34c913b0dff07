"""Poll Cosmos LCD endpoints and alert on validator-relevant chain events."""

__version__ = "0.3.0"
