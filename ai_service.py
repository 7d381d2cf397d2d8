"""AI suggestions for tasks.

``HuggingFaceAIService`` asks a hosted text-generation model for breakdown
ideas and a priority. Any failure degrades to fixed fallback answers, so
callers never have to handle errors from here.
"""
import logging
import re
from abc import ABC, abstractmethod

import httpx

from schema import AiSuggestionCreate, DEFAULT_PRIORITY

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = 'https://api-inference.huggingface.co/models/google/flan-t5-base'
FALLBACK_SUGGESTION = 'Break this task into smaller steps for better management'
MAX_SUGGESTIONS = 3

_BULLET = re.compile(r'^[-•]\s*')


class AIService(ABC):

    @abstractmethod
    def generate_task_suggestions(self, task):
        """Return up to three ``AiSuggestionCreate`` records for ``task``."""

    @abstractmethod
    def analyze_priority(self, task):
        """Return ``'low'``, ``'medium'`` or ``'high'`` for ``task``."""

    def close(self):
        pass


def fallback_suggestions(task):
    return [AiSuggestionCreate(task_id=task.id, suggestion=FALLBACK_SUGGESTION, priority=task.priority)]


def parse_suggestions(text):
    """Pull bullet points out of generated text, else its first non-empty lines."""
    lines = [line.strip() for line in re.split(r'\n+', text) if line.strip()]
    bullets = [_BULLET.sub('', line) for line in lines if line.startswith(('-', '•'))]
    bullets = [line for line in bullets if line]
    return (bullets or lines)[:MAX_SUGGESTIONS]


def parse_priority(text):
    text = text.strip().lower()
    for label in ('high', 'medium', 'low'):
        if label in text:
            return label
    return DEFAULT_PRIORITY


def _describe(task):
    due = task.due_date.strftime('%a %b %d %Y') if task.due_date else 'No due date'
    return (
        f"Task title: {task.title}\n"
        f"Task description: {task.description or 'No description provided'}\n"
        f"Due date: {due}\n"
    )


class HuggingFaceAIService(AIService):

    def __init__(self, api_key='', endpoint=DEFAULT_ENDPOINT, timeout=15.0, client=None):
        self._api_key = api_key
        self._endpoint = endpoint
        # Only a client built here is ours to close
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def close(self):
        if self._owns_client:
            self._client.close()

    def _generate(self, prompt):
        response = self._client.post(
            self._endpoint,
            headers={'Authorization': f'Bearer {self._api_key}'},
            json={'inputs': prompt},
        )
        response.raise_for_status()
        return response.json()[0]['generated_text']

    def generate_task_suggestions(self, task):
        prompt = (
            "Based on the following task, suggest improvements and subtasks:\n"
            + _describe(task)
            + f"Priority: {task.priority}\n\n"
            "Provide suggestions in bullet points:"
        )
        try:
            suggestions = parse_suggestions(self._generate(prompt))
        except Exception:
            logger.exception("AI suggestion generation failed for task %s", task.id)
            return fallback_suggestions(task)
        return [
            AiSuggestionCreate(task_id=task.id, suggestion=text, priority=task.priority)
            for text in suggestions
        ]

    def analyze_priority(self, task):
        prompt = (
            "Analyze the following task and suggest a priority level (low, medium, or high):\n"
            + _describe(task)
            + "\nReply with only one word: low, medium, or high."
        )
        try:
            return parse_priority(self._generate(prompt))
        except Exception:
            logger.exception("AI priority analysis failed for task %s", task.id)
            return task.priority or DEFAULT_PRIORITY


class OfflineAIService(AIService):
    """Deterministic stand-in used when no Hugging Face API key is configured."""

    def generate_task_suggestions(self, task):
        return fallback_suggestions(task)

    def analyze_priority(self, task):
        return task.priority or DEFAULT_PRIORITY
