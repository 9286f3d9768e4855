"""Trial Index - one scan of the criterion corpus into trial id -> criteria."""

import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from backend.models.criteria import Criterion
from backend.eligibility.facts_adapter import normalize_criterion
from backend.config.logging_config import get_logger

logger = get_logger(__name__)

CLUSTER_KEY_PREFIX = "CLUSTER_"


class TrialIndex:
    """Immutable mapping from trial identifier to its criteria."""

    def __init__(self, corpus: Any):
        index: Dict[str, List[Criterion]] = {}
        skipped = 0

        if isinstance(corpus, dict):
            for cluster_key, cluster in corpus.items():
                if not str(cluster_key).startswith(CLUSTER_KEY_PREFIX) or not isinstance(cluster, dict):
                    continue
                criteria = cluster.get("criteria")
                if not isinstance(criteria, list) or not criteria:
                    continue
                cluster_code = cluster.get("cluster_code") or str(cluster_key)[len(CLUSTER_KEY_PREFIX):]

                for raw in criteria:
                    if not isinstance(raw, dict) or not raw.get("nct_id"):
                        skipped += 1
                        continue
                    try:
                        criterion = normalize_criterion(raw, cluster_code)
                    except ValidationError as exc:
                        skipped += 1
                        logger.warning(
                            "Skipping malformed criterion",
                            criterion_id=raw.get("id"),
                            cluster=cluster_code,
                            error=str(exc),
                        )
                        continue
                    index.setdefault(criterion.nct_id, []).append(criterion)
        elif corpus is not None:
            logger.warning("Criterion corpus is not an object, index is empty", corpus_type=type(corpus).__name__)

        self._index: Dict[str, Tuple[Criterion, ...]] = {k: tuple(v) for k, v in index.items()}
        logger.info(
            "Trial index built",
            trials=len(self._index),
            criteria=self.criterion_count,
            skipped=skipped,
        )

    @classmethod
    def from_file(cls, path: Path) -> "TrialIndex":
        return cls(load_criteria_corpus(path))

    def all_trial_ids(self) -> List[str]:
        return list(self._index.keys())

    def criteria_for(self, trial_id: str) -> Tuple[Criterion, ...]:
        return self._index.get(trial_id, ())

    @property
    def criterion_count(self) -> int:
        return sum(len(c) for c in self._index.values())

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, trial_id: str) -> bool:
        return trial_id in self._index


def load_criteria_corpus(path: Path) -> Dict[str, Any]:
    """
    Read a criterion corpus grouped by CLUSTER_<CODE> keys.

    A missing or unreadable file yields an empty corpus.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning("Criterion corpus not found", path=str(path))
        return {}
    except json.JSONDecodeError as e:
        logger.error("Criterion corpus is not valid JSON", path=str(path), error=str(e))
        return {}
    return data if isinstance(data, dict) else {}
