import logging
import random
from typing import Iterable, List, Optional

from .models import Pool, Question, QuestionType
from .store import Store

logger = logging.getLogger(__name__)


class QuestionSampler:
    """Selects random batches of questions from one pool of one type."""

    def __init__(self, store: Store, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()

    def sample(
        self,
        qtype: QuestionType,
        pool: Pool,
        exclude_ids: Optional[Iterable[str]] = None,
        count: int = 10,
    ) -> List[Question]:
        candidates = self.store.questions_by(qtype, pool)
        excluded = set(exclude_ids or ())

        if excluded:
            filtered = [q for q in candidates if q.id not in excluded]
            if filtered:
                candidates = filtered
            else:
                # Everything was served recently; repeating beats an empty batch.
                logger.info(
                    f"Exclusion emptied {qtype.value}/{pool.value} pool, sampling unfiltered"
                )

        return self.rng.sample(candidates, min(count, len(candidates)))

    def recent_exclusions(self, identity_key: str, qtype: QuestionType, cache_size: int) -> List[str]:
        return self.store.recent_question_ids(identity_key, qtype, cache_size)
