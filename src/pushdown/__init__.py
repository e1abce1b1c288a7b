from pushdown.defs.errors import (ExecutionError, NotFoundError, PartitionOverlapError,
                                  PushdownError, RankDeficiencyError, SchemaMismatchError,
                                  StoreConnectionError)
from pushdown.defs.expr import col, count, desc, drop, lit, max_, mean, min_, n, random_uniform, sum_
from pushdown.defs.model import FittedModel, coefficient_table, fit_ols, predict_local
from pushdown.defs.query import Query
from pushdown.defs.sampling import approximate_sample, sample_rows
from pushdown.defs.scoring import assert_disjoint, score_by_label, score_query, summarize_scores
from pushdown.defs.store import Store, StoreParams, connect
