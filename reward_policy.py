"""
Merge Rewards policy
Pure scoring of a merged PR's diff stats into eligibility and points,
plus the fixed conversion from points to SOL.

Scoring:
    points = 100 + min(additions * 2, 500) + min(files_changed * 10, 200)
Eligibility:
    additions >= 20 and files_changed >= 2
"""

from dataclasses import dataclass

# =============================================================================
# CONFIG
# =============================================================================

MIN_ADDITIONS = 20
MIN_FILES_CHANGED = 2

BASE_POINTS = 100
ADDITION_POINTS = 2
MAX_ADDITION_POINTS = 500
FILE_POINTS = 10
MAX_FILE_POINTS = 200
MAX_POINTS = BASE_POINTS + MAX_ADDITION_POINTS + MAX_FILE_POINTS

LAMPORTS_PER_SOL = 1_000_000_000
# 1 point = 1/10000 SOL
LAMPORTS_PER_POINT = LAMPORTS_PER_SOL // 10_000
SOL_PER_POINT = LAMPORTS_PER_POINT / LAMPORTS_PER_SOL


@dataclass(frozen=True)
class RewardDecision:
    qualifies: bool
    points: int
    meets_additions: bool
    meets_files: bool

    def to_dict(self):
        return {
            "qualifies": self.qualifies,
            "points": self.points,
            "meetsAdditions": self.meets_additions,
            "meetsFiles": self.meets_files,
        }


def calculate_points(additions: int, files_changed: int) -> int:
    """Points for a diff; bounded by MAX_POINTS."""
    additions = max(additions, 0)
    files_changed = max(files_changed, 0)
    addition_bonus = min(additions * ADDITION_POINTS, MAX_ADDITION_POINTS)
    file_bonus = min(files_changed * FILE_POINTS, MAX_FILE_POINTS)
    return BASE_POINTS + addition_bonus + file_bonus


def evaluate(additions: int, files_changed: int) -> RewardDecision:
    """
    Decide whether a merged PR earns a reward and how many points it scores.
    Points are computed even for ineligible PRs so callers can report them.
    """
    meets_additions = additions >= MIN_ADDITIONS
    meets_files = files_changed >= MIN_FILES_CHANGED
    return RewardDecision(
        qualifies=meets_additions and meets_files,
        points=calculate_points(additions, files_changed),
        meets_additions=meets_additions,
        meets_files=meets_files,
    )


def reward_lamports(points: int) -> int:
    """Convert points to the payout amount in lamports."""
    return points * LAMPORTS_PER_POINT


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL
