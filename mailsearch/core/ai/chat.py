"""
Question answering over the mail corpus (retrieval-augmented chat).
"""
import logging
from typing import List, TYPE_CHECKING

from pydantic import BaseModel, Field

from mailsearch.core.ai.ollama_client import OllamaClient
from mailsearch.core.email.models import ChunkHit

if TYPE_CHECKING:
    from mailsearch.core.search.vector_retriever import VectorRetriever

logger = logging.getLogger(__name__)

NO_INFORMATION_ANSWER = "No relevant information was found in the imported emails."

CHAT_SYSTEM_PROMPT = """You are an assistant that answers questions about the user's imported emails.
Answer only from the email excerpts below. If they do not contain the answer, say so.
Reply in the language of the question.

Email excerpts:
{context}"""


class ChatAnswer(BaseModel):
    answer: str
    sources: List[ChunkHit] = Field(default_factory=list)


def build_context(hits: List[ChunkHit]) -> str:
    return "\n\n".join(
        f"[Email {i}] (mail id {hit.mail_id}, similarity {hit.score:.2f})\n{hit.content}"
        for i, hit in enumerate(hits, 1)
    )


def answer_question(
    question: str,
    retriever: "VectorRetriever",
    client: OllamaClient,
    top_k: int = 3,
) -> ChatAnswer:
    """
    Answer from the chunks above the similarity threshold.

    Without any relevant chunk the fixed NO_INFORMATION_ANSWER is returned
    and the chat model is not called.

    Raises:
        LLMUnavailableError: relevant chunks were found but the chat model
            could not be reached
    """
    hits = retriever.search_text(question, top_k)
    if not hits:
        logger.info("No chunk above the similarity threshold, skipping the chat model")
        return ChatAnswer(answer=NO_INFORMATION_ANSWER)

    reply = client.chat([
        {"role": "system", "content": CHAT_SYSTEM_PROMPT.format(context=build_context(hits))},
        {"role": "user", "content": question},
    ])
    return ChatAnswer(answer=reply.strip(), sources=hits)
