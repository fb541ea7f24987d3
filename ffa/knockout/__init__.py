"""Knockout module: two-leg bracket generation and resolution."""

from ffa.knockout.bracket import Bracket, Matchup, decide_winner

__all__ = ["Bracket", "Matchup", "decide_winner"]
