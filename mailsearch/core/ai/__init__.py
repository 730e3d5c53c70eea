"""AI module: Ollama client, classification, event extraction and chat"""
from .ollama_client import OllamaClient, LLMUnavailableError
from .enrichment import classify_email, extract_events
from .event_heuristics import extract_events_locally
from .chat import answer_question, ChatAnswer, NO_INFORMATION_ANSWER

__all__ = [
    'OllamaClient',
    'LLMUnavailableError',
    'classify_email',
    'extract_events',
    'extract_events_locally',
    'answer_question',
    'ChatAnswer',
    'NO_INFORMATION_ANSWER',
]
