"""
Pure grouping algorithms. Nothing in this package touches the database.
"""

from .annealing import GREEDY, AnnealingSchedule
from .balanced import balanced_teams
from .clustering import cluster_by_distance
from .dispatch import compute_groups
from .distance import build_distance_matrix, field_distance, gower_distance, jaccard_distance
from .eligibility import Eligibility, minimum_entries, partition_entries
from .field_meta import FieldMeta, NumericRange, build_field_meta, with_numeric_ranges
from .metrics import compute_group_metrics
from .results import GroupResult
from .split import split_by_attributes
from .variety import PenaltyTable, build_penalty_table, pair_key

__all__ = [
    "AnnealingSchedule",
    "Eligibility",
    "FieldMeta",
    "GREEDY",
    "GroupResult",
    "NumericRange",
    "PenaltyTable",
    "balanced_teams",
    "build_distance_matrix",
    "build_field_meta",
    "build_penalty_table",
    "cluster_by_distance",
    "compute_groups",
    "compute_group_metrics",
    "field_distance",
    "gower_distance",
    "jaccard_distance",
    "minimum_entries",
    "pair_key",
    "partition_entries",
    "split_by_attributes",
    "with_numeric_ranges",
]
