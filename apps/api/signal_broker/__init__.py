"""Signaling broker for peer-to-peer media streams."""
