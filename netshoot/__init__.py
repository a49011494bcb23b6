"""Host discovery that finds tunnelable hosts by sending payloads to a cooperating server."""

__version__ = "0.1.0"