"""Ballot ingestion."""

from .ingest import BallotIngest, BallotValidator, points_from_totals, team_totals

__all__ = ["BallotIngest", "BallotValidator", "points_from_totals", "team_totals"]
