"""Rewardman adapters for external collaborators."""
