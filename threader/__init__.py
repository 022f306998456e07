"""threader - reconstruct single-author threads from Mastodon and Bluesky."""

__version__ = "0.1.0"
