"""static-publisher: content-addressed publishing of static sites to key-value storage."""

__version__ = "0.1.0"
