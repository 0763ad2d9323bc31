"""Shared infrastructure for the study planner: pipelines, CLI framework, YAML IO."""
