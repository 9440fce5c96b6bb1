import logging

import requests

from config import OPENROUTER_API_KEY, TUTOR_API_URL, TUTOR_MODEL

logger = logging.getLogger(__name__)


def complete(messages, model=TUTOR_MODEL, timeout=60):
    """Send a chat history to the tutor model and return the reply text."""
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json"
    }

    payload = {
        "model": model,
        "messages": messages,
    }

    response = requests.post(TUTOR_API_URL, headers=headers, json=payload, timeout=timeout)

    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        logger.error("Tutor request failed: %s", e)
        logger.error("Response content: %s", response.text)
        raise

    try:
        return response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        logger.error("Unexpected tutor response: %s", response.text)
        raise requests.exceptions.InvalidJSONError(f"Malformed tutor response: {e!r}", response=response) from e
