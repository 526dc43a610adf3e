"""Repo Catalog - discover, describe and filter the git repositories on disk."""

__version__ = "0.1.0"
