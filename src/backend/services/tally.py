"""
STAR tally engine (Score Then Automatic Runoff).

Computes per-option statistics for a fixed set of ballots and resolves the
winner:

1. Scoring round: options are ranked by total score. The finalists are the
   top option plus every option tied for second place, or every option tied
   for first place if the top is shared.
2. Automatic runoff: each ballot gives one head-to-head point to the finalist
   it scores higher. Equal scores are counted as "no preference".
3. Tie-break cascade when the runoff does not separate the finalists:
   higher total score, then more 5-star ratings, then earlier option order.

The engine is pure: the same options and ballots always give the same result.
"""

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal
from itertools import combinations
from typing import Optional

from schemas.statistics import (
    HeadToHeadMatchup,
    OptionStats,
    RunoffResult,
    TallyResult,
    TieBreak,
    VoteStatistics,
)

SCORE_VALUES = range(0, 6)

# Order of the comparison key built in _rank_key
_KEY_RULES = (
    TieBreak.HEAD_TO_HEAD,
    TieBreak.TOTAL_SCORE,
    TieBreak.FIVE_STAR_COUNT,
    TieBreak.OPTION_ORDER,
)


def _score_at(ballot: Sequence[int], position: int) -> Optional[int]:
    """Score a ballot gives the option at ``position``, None if absent."""
    if position < len(ballot):
        return ballot[position]
    return None


def _round_average(total: int, count: int) -> float:
    if count == 0:
        return 0.0
    average = (Decimal(total) / Decimal(count)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(average)


class TallyEngine:
    """Computes STAR statistics and winners for a vote's ballots."""

    def compute_statistics(
        self,
        options: Sequence[str],
        ballots: Sequence[Sequence[int]],
    ) -> VoteStatistics:
        """
        Aggregate scores per option.

        Absent entries (a ballot shorter than the option list) add nothing to
        the total and are reported under score 0 in the frequency table.
        """
        ballot_count = len(ballots)
        option_scores = []

        for position, option in enumerate(options):
            frequency = {score: 0 for score in SCORE_VALUES}
            total = 0
            for ballot in ballots:
                score = _score_at(ballot, position)
                if score is None:
                    frequency[0] += 1
                    continue
                total += score
                frequency[score] = frequency.get(score, 0) + 1

            option_scores.append(
                OptionStats(
                    option=option,
                    position=position,
                    total_score=total,
                    average_score=_round_average(total, ballot_count),
                    frequency=frequency,
                    total_votes=ballot_count,
                )
            )

        ranking = [
            stats.option
            for stats in sorted(option_scores, key=lambda s: (-s.total_score, s.position))
        ]

        return VoteStatistics(
            total_ballots=ballot_count,
            option_scores=option_scores,
            ranking=ranking,
        )

    @staticmethod
    def head_to_head(
        ballots: Sequence[Sequence[int]],
        position_a: int,
        position_b: int,
    ) -> tuple[int, int, int]:
        """
        Count ballots preferring option A, option B, or neither.

        Returns (votes_a, votes_b, no_preference).
        """
        votes_a = votes_b = no_preference = 0
        for ballot in ballots:
            score_a = _score_at(ballot, position_a)
            score_b = _score_at(ballot, position_b)
            if score_a is None or score_b is None or score_a == score_b:
                no_preference += 1
            elif score_a > score_b:
                votes_a += 1
            else:
                votes_b += 1
        return votes_a, votes_b, no_preference

    @staticmethod
    def select_finalists(statistics: VoteStatistics) -> list[OptionStats]:
        """Top option plus everyone tied for second, or everyone tied for first."""
        ranked = sorted(statistics.option_scores, key=lambda s: (-s.total_score, s.position))
        if len(ranked) < 2:
            return ranked

        top_total = ranked[0].total_score
        tied_for_first = [s for s in ranked if s.total_score == top_total]
        if len(tied_for_first) > 1:
            return tied_for_first

        second_total = ranked[1].total_score
        return [ranked[0]] + [s for s in ranked[1:] if s.total_score == second_total]

    def determine_winner(
        self,
        options: Sequence[str],
        ballots: Sequence[Sequence[int]],
        statistics: Optional[VoteStatistics] = None,
    ) -> Optional[RunoffResult]:
        """
        Run the automatic runoff.

        Returns None when no winner is determinable (no options or no
        ballots); otherwise exactly one winner.
        """
        if not options or not ballots:
            return None
        if statistics is None:
            statistics = self.compute_statistics(options, ballots)

        finalists = self.select_finalists(statistics)
        if len(finalists) == 1:
            return RunoffResult(
                winner=finalists[0].option,
                finalists=[finalists[0].option],
                matchups=[],
                decided_by=TieBreak.TOTAL_SCORE,
            )

        pairwise_wins = {f.position: 0 for f in finalists}
        matchups = []
        for first, second in combinations(finalists, 2):
            votes_a, votes_b, no_preference = self.head_to_head(
                ballots, first.position, second.position
            )
            if votes_a > votes_b:
                pairwise_wins[first.position] += 1
            elif votes_b > votes_a:
                pairwise_wins[second.position] += 1
            matchups.append(
                HeadToHeadMatchup(
                    option_a=first.option,
                    option_b=second.option,
                    votes_a=votes_a,
                    votes_b=votes_b,
                    no_preference=no_preference,
                )
            )

        def _rank_key(stats: OptionStats) -> tuple[int, int, int, int]:
            return (
                pairwise_wins[stats.position],
                stats.total_score,
                stats.five_star_count,
                -stats.position,
            )

        ordered = sorted(finalists, key=_rank_key, reverse=True)
        winner, runner_up = ordered[0], ordered[1]
        winner_key, runner_up_key = _rank_key(winner), _rank_key(runner_up)
        decided_by = next(
            rule
            for rule, mine, theirs in zip(_KEY_RULES, winner_key, runner_up_key)
            if mine != theirs
        )

        return RunoffResult(
            winner=winner.option,
            finalists=[f.option for f in finalists],
            matchups=matchups,
            decided_by=decided_by,
        )

    def tally(
        self,
        options: Sequence[str],
        ballots: Sequence[Sequence[int]],
    ) -> TallyResult:
        """Statistics and winner in one pass."""
        statistics = self.compute_statistics(options, ballots)
        runoff = self.determine_winner(options, ballots, statistics)
        return TallyResult(
            statistics=statistics,
            winner=runoff.winner if runoff else None,
            runoff=runoff,
        )
