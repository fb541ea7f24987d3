"""
Live Point Aggregator.

Single authoritative live-points function: called once per refresh, every
consumer (fixtures, rank, group stage, bracket) reads its output.

Per entry: starters only, unreported players count 0, the armband holder's
raw points are multiplied. Which player holds the armband is decided by an
ordered set of branches, each tagged on the result:

    captain          selected captain (featured, or still to play)
    vice_captain     captain did not feature or is not a starter, fallback enabled
    carried_forward  no captain or vice among the starters, previous armband carried over
    forfeited        none of the above: multiplier 1 for everyone
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Iterator, Optional

from ffa.config import SeasonConfig
from ffa.errors import ValidationFailure
from ffa.feed.base import FeedSnapshot, LineupPick, LineupSelection, PlayerPeriodScore
from ffa.identity import ManagerId

logger = logging.getLogger(__name__)

CAPTAIN = "captain"
VICE_CAPTAIN = "vice_captain"
CARRIED_FORWARD = "carried_forward"
FORFEITED = "forfeited"

CARRY_FORWARD_MODES = ("off", "single", "chain")


@dataclass(frozen=True)
class ScoringRules:
    """Scoring switches for one season."""

    starter_slots: int = 11
    captain_multiplier: int = 2
    vice_captain_fallback: bool = True
    captain_carry_forward: str = "single"  # "off" | "single" | "chain"
    apply_autosubs: bool = False
    bonus_reliable_at_60: bool = True

    def __post_init__(self):
        if self.captain_carry_forward not in CARRY_FORWARD_MODES:
            raise ValidationFailure(
                f"captain_carry_forward must be one of {CARRY_FORWARD_MODES}, "
                f"got {self.captain_carry_forward!r}"
            )
        if self.starter_slots < 1:
            raise ValidationFailure(f"starter_slots must be positive, got {self.starter_slots}")

    @classmethod
    def from_season(cls, config: SeasonConfig) -> "ScoringRules":
        return cls(
            starter_slots=config.starter_slots,
            captain_multiplier=config.captain_multiplier,
            vice_captain_fallback=config.vice_captain_fallback,
            captain_carry_forward=config.captain_carry_forward,
            apply_autosubs=config.apply_autosubs,
            bonus_reliable_at_60=config.bonus_reliable_at_60,
        )


@dataclass(frozen=True)
class PeriodTotal:
    """One entry's points for one period."""

    manager: ManagerId
    period: int
    total: int
    captain_points: int = 0  # armband holder's contribution after the multiplier
    bench_points: int = 0
    captain_player_id: Optional[int] = None  # armband holder, None when forfeited
    captaincy: str = FORFEITED
    provisional: bool = True
    substitutions: tuple[tuple[int, int], ...] = ()  # (out, in) player ids


@dataclass
class LivePoints(Mapping):
    """ManagerId -> PeriodTotal for one period."""

    period: int
    totals: dict[ManagerId, PeriodTotal] = field(default_factory=dict)
    provisional: bool = True
    stale: bool = False
    excluded: dict[str, str] = field(default_factory=dict)

    def __getitem__(self, manager: ManagerId) -> PeriodTotal:
        return self.totals[manager]

    def __iter__(self) -> Iterator[ManagerId]:
        return iter(self.totals)

    def __len__(self) -> int:
        return len(self.totals)

    def points(self) -> dict[ManagerId, int]:
        return {manager: t.total for manager, t in self.totals.items()}

    def captain_points(self) -> dict[ManagerId, int]:
        return {manager: t.captain_points for manager, t in self.totals.items()}


def _raw_points(scores: dict[int, PlayerPeriodScore], player_id: int, rules: ScoringRules) -> int:
    """Player points, never negative; unconfirmed bonus is held back while live."""
    score = scores.get(player_id)
    if score is None:
        return 0
    points = score.points
    if rules.bonus_reliable_at_60 and not score.bonus_confirmed:
        points -= score.bonus
    return max(0, points)


def _did_not_feature(scores: dict[int, PlayerPeriodScore], player_id: int) -> bool:
    score = scores.get(player_id)
    return score is not None and score.did_not_feature


def apply_autosubs(
    lineup: LineupSelection,
    scores: dict[int, PlayerPeriodScore],
    starter_slots: int,
) -> tuple[list[LineupPick], list[LineupPick], list[tuple[int, int]]]:
    """
    Replace starters who did not feature with bench players who did.

    Bench order is respected: each starter takes the first unused bench
    player with minutes > 0. The substitute inherits the starter's slot and
    captaincy flags. Formation constraints are not checked.

    Returns:
        (starters, bench, substitutions) after substitution
    """
    starters = lineup.starters(starter_slots)
    bench = lineup.bench(starter_slots)
    used: set[int] = set()
    final_starters: list[LineupPick] = []
    subs: list[tuple[int, int]] = []

    for starter in starters:
        if not _did_not_feature(scores, starter.player_id):
            final_starters.append(starter)
            continue
        replacement = None
        for candidate in bench:
            if candidate.player_id in used:
                continue
            score = scores.get(candidate.player_id)
            if score is not None and score.minutes > 0:
                replacement = candidate
                break
        if replacement is None:
            final_starters.append(starter)
            continue
        used.add(replacement.player_id)
        subs.append((starter.player_id, replacement.player_id))
        final_starters.append(
            replace(
                replacement,
                slot=starter.slot,
                is_captain=starter.is_captain,
                is_vice_captain=starter.is_vice_captain,
            )
        )

    remaining_bench = [p for p in bench if p.player_id not in used]
    return final_starters, remaining_bench, subs


def _carried_captain(
    previous: Optional[PeriodTotal],
    mode: str,
) -> Optional[int]:
    """Armband holder carried over from the previous period, if the mode allows it."""
    if previous is None or mode == "off" or previous.captain_player_id is None:
        return None
    if mode == "single" and previous.captaincy == CARRIED_FORWARD:
        # Single carry resets to forfeiture after one missed selection
        return None
    return previous.captain_player_id


def _armband(
    starters: list[LineupPick],
    scores: dict[int, PlayerPeriodScore],
    rules: ScoringRules,
    previous: Optional[PeriodTotal],
) -> tuple[Optional[int], str]:
    """Decide who gets the multiplier. Returns (player_id, captaincy branch)."""
    starter_ids = {p.player_id for p in starters}
    captain = next((p for p in starters if p.is_captain), None)
    vice = next((p for p in starters if p.is_vice_captain), None)

    if captain is not None:
        if not _did_not_feature(scores, captain.player_id):
            return captain.player_id, CAPTAIN
        if rules.vice_captain_fallback and vice is not None:
            return vice.player_id, VICE_CAPTAIN
        return captain.player_id, CAPTAIN

    if rules.vice_captain_fallback and vice is not None:
        return vice.player_id, VICE_CAPTAIN

    carried = _carried_captain(previous, rules.captain_carry_forward)
    if carried is not None and carried in starter_ids:
        return carried, CARRIED_FORWARD

    return None, FORFEITED


def compute_entry_total(
    lineup: LineupSelection,
    scores: dict[int, PlayerPeriodScore],
    rules: ScoringRules,
    previous: Optional[PeriodTotal] = None,
    provisional: bool = True,
) -> PeriodTotal:
    """
    Compute one entry's PeriodTotal.

    Args:
        lineup: Validated lineup for the period
        scores: Live player scores keyed by player id
        rules: Scoring switches
        previous: The entry's PeriodTotal for the previous period (carry-forward)
        provisional: Whether the period is still open

    Returns:
        PeriodTotal with the captaincy branch that applied
    """
    lineup.validate()

    if rules.apply_autosubs:
        starters, bench, subs = apply_autosubs(lineup, scores, rules.starter_slots)
    else:
        starters, bench, subs = lineup.starters(rules.starter_slots), lineup.bench(rules.starter_slots), []

    holder, captaincy = _armband(starters, scores, rules, previous)

    total = 0
    captain_points = 0
    for pick in starters:
        raw = _raw_points(scores, pick.player_id, rules)
        if holder is not None and pick.player_id == holder:
            contribution = raw * rules.captain_multiplier
            captain_points = contribution
        else:
            contribution = raw
        total += contribution

    if captaincy == FORFEITED:
        logger.info(
            f"[LIVE] {lineup.manager} period {lineup.period}: no captain, captaincy forfeited"
        )

    return PeriodTotal(
        manager=lineup.manager,
        period=lineup.period,
        total=total,
        captain_points=captain_points,
        bench_points=sum(_raw_points(scores, p.player_id, rules) for p in bench),
        captain_player_id=holder,
        captaincy=captaincy,
        provisional=provisional,
        substitutions=tuple(subs),
    )


def compute_live_points(
    snapshot: FeedSnapshot,
    rules: ScoringRules,
    captain_history: Optional[dict[ManagerId, PeriodTotal]] = None,
) -> LivePoints:
    """
    Compute every active entry's total for the snapshot's period.

    An entry whose lineup fails validation is excluded (and reported in
    `excluded`); it never aborts the other entries.

    Args:
        snapshot: Normalized feed data for one period
        rules: Scoring switches
        captain_history: Previous-period totals keyed by manager, used for
            captain carry-forward

    Returns:
        LivePoints keyed by ManagerId
    """
    captain_history = captain_history or {}
    provisional = not snapshot.finalized or snapshot.stale
    result = LivePoints(
        period=snapshot.period,
        provisional=provisional,
        stale=snapshot.stale,
        excluded=dict(snapshot.errors),
    )

    for manager in sorted(snapshot.lineups):
        lineup = snapshot.lineups[manager]
        try:
            result.totals[manager] = compute_entry_total(
                lineup,
                snapshot.scores,
                rules,
                previous=captain_history.get(manager),
                provisional=provisional,
            )
        except ValidationFailure as e:
            logger.warning(f"[LIVE] Excluding {manager} from period {snapshot.period}: {e}")
            result.excluded[manager] = str(e)

    logger.info(
        f"[LIVE] Period {snapshot.period}: {len(result.totals)} totals "
        f"({'provisional' if provisional else 'final'}), {len(result.excluded)} excluded"
    )
    return result
