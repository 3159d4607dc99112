"""Offline-first sync core for the habit tracker."""

__version__ = "0.1.0"
