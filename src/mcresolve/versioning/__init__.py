"""Version keys, constraints, package models and the metadata cache."""
