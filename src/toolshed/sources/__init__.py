"""Package-manager adapters — one per recognised install source."""
