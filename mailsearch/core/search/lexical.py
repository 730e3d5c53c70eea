"""
Keyword search over the imported corpus.

Candidates come from a substring match in the database (any token is
enough); ranking is a plain frequency sum of every token over the
message text. No TF-IDF: the corpus is small and recall matters more
than precision.
"""
import logging
from typing import List

from mailsearch.core.database.models import Email
from mailsearch.core.database.repository import MailRepository, MAX_CANDIDATES
from mailsearch.core.email.models import SearchHit
from mailsearch.core.email.text_normalizer import make_snippet

logger = logging.getLogger(__name__)

MIN_CANDIDATE_TOKEN_LENGTH = 2
MAX_CANDIDATE_TOKENS = 12


def tokenize(query: str) -> List[str]:
    return [token for token in (query or "").split() if token]


def count_occurrences(text: str, token: str) -> int:
    """Case-insensitive count of the literal token in text."""
    if not text or not token:
        return 0
    return text.lower().count(token.lower())


def score_text(text: str, tokens: List[str]) -> int:
    return sum(count_occurrences(text, token) for token in tokens)


def scoring_text(email: Email) -> str:
    attachment_text = "\n\n".join(a.extracted_text or "" for a in email.attachments)
    return f"{email.subject} {email.body} {email.sender} {email.date} {attachment_text}"


class LexicalScorer:
    """Frequency-sum keyword scorer"""

    def __init__(self, repository: MailRepository, max_candidates: int = MAX_CANDIDATES):
        self.repository = repository
        self.max_candidates = max_candidates

    def search(self, query: str, top_k: int = 10) -> List[SearchHit]:
        tokens = tokenize(query)
        if not tokens:
            return []

        # Single characters match nearly everything
        candidate_tokens = [t for t in tokens if len(t) >= MIN_CANDIDATE_TOKEN_LENGTH][:MAX_CANDIDATE_TOKENS]
        if not candidate_tokens:
            return []

        candidates = self.repository.find_candidates(candidate_tokens, limit=self.max_candidates)

        hits = []
        for email in candidates:
            score = score_text(scoring_text(email), tokens)
            if score <= 0:
                continue
            hits.append(SearchHit(
                mail_id=email.id,
                subject=email.subject,
                score=float(score),
                sender=email.sender,
                date=email.date,
                body=email.body,
                snippet=make_snippet(email.body, tokens),
            ))

        # sorted() is stable, so ties keep scan order
        hits = sorted(hits, key=lambda hit: hit.score, reverse=True)
        logger.debug(f"Keyword search '{query}': {len(candidates)} candidates, {len(hits)} scored")
        return hits[:max(1, top_k)]
