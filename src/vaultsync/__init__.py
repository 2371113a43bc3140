"""vaultsync: bidirectional vault synchronization with a versioned object store."""

__version__ = "0.1.0"
