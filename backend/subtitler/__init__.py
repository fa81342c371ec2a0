"""Subtitle generation backend."""
