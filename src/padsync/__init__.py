"""padsync -- keep soundboard profiles in sync with a remote object store."""

__version__ = "0.3.0"
