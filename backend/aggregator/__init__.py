"""Fixture aggregation: team matching, candidate scoring, merging and orchestration."""
