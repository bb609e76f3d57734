"""pushgate: authenticated APNS and HMS push notification dispatch."""

__version__ = "1.0.0"
