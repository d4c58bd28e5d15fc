"""Tekton Task schema validation and deterministic update rules."""
