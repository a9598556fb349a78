"""Utility helpers shared across the vaultchat package."""
