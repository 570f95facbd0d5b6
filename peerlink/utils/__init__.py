"""Utility helpers for PeerLink."""
