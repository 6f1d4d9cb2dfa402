"""Cluster decommission ranking: filtering, eligibility gating and explainable scoring."""

__version__ = "0.1.0"
