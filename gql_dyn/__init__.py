"""Dynamic GraphQL documents from an entity catalog and include specs."""

__version__ = "0.1.0"
