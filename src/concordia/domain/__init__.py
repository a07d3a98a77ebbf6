"""Concordia domain packages."""
