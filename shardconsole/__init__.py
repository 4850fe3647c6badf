"""Remote administrative console for a running shard simulation."""

__version__ = "0.4.0"
