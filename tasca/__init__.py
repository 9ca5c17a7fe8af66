"""Gusto in Tasca card store: models, storage backends and sync workflows."""
