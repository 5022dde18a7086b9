"""
Example Python client for the chat endpoints.

This script sends a question to the assistant, optionally continuing a
conversation, and prints the parsed advice. With --stream it prints the
answer as it arrives over server-sent events.
"""
import os
import sys
import json
import argparse
from typing import Any, Dict, Optional

import httpx

# Configuration
API_URL = os.environ.get("API_URL", "http://localhost:8000")
JWT_TOKEN = os.environ.get("JWT_TOKEN", "")


class ChatError(Exception):
    """Custom exception for chat API errors."""
    pass


def _headers() -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if JWT_TOKEN:
        headers["Authorization"] = f"Bearer {JWT_TOKEN}"
    return headers


def call_chat(query: str, conversation_id: Optional[str] = None, language: str = "en") -> Dict[str, Any]:
    """
    Call the chat endpoint with a farming question.

    Args:
        query: The question
        conversation_id: Conversation to continue, if any
        language: "en" or "hi"

    Returns:
        The AiResponse as a dict
    """
    payload = {"query": query, "conversation_id": conversation_id, "language": language}
    try:
        response = httpx.post(f"{API_URL}/chat", headers=_headers(), json=payload, timeout=90.0)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as http_err:
        raise ChatError(
            f"HTTP error calling chat endpoint: {http_err}. Response: {http_err.response.text}"
        ) from http_err
    except httpx.RequestError as req_err:
        raise ChatError(f"Request error calling chat endpoint: {req_err}") from req_err


def stream_chat(query: str, conversation_id: Optional[str] = None, language: str = "en") -> Optional[Dict[str, Any]]:
    """Print streamed chunks; returns the final response, or None on an error event."""
    payload = {"query": query, "conversation_id": conversation_id, "language": language}
    try:
        with httpx.stream("POST", f"{API_URL}/chat/stream", headers=_headers(), json=payload, timeout=90.0) as response:
            response.raise_for_status()
            for line in response.iter_lines():
                if not line.startswith("data: "):
                    continue
                event = json.loads(line[len("data: "):])
                if event["type"] == "chunk":
                    print(event["content"], end="", flush=True)
                elif event["type"] == "done":
                    print()
                    return event["response"]
                else:
                    print(f"\nError: {event.get('content')}")
                    return None
    except httpx.HTTPStatusError as http_err:
        raise ChatError(f"HTTP error calling stream endpoint: {http_err}") from http_err
    except httpx.RequestError as req_err:
        raise ChatError(f"Request error calling stream endpoint: {req_err}") from req_err
    return None


def print_response(response: Dict[str, Any]) -> None:
    print("\n=== Advice ===\n")
    print(response["advice"])
    print()

    recommendations = response.get("recommendations") or {}
    for label, key in (("Immediate", "immediate"), ("Next steps", "short_term"), ("Long term", "long_term")):
        items = recommendations.get(key) or []
        if items:
            print(f"{label}:")
            for item in items:
                print(f"  - {item}")

    for question in response.get("follow_up_questions") or []:
        print(f"? {question}")

    print(f"\nConversation: {response['conversation_id']} ({response.get('response_time', 0):.0f} ms)")


def main():
    """Main function."""
    parser = argparse.ArgumentParser(description="Ask the farm assistant a question")
    parser.add_argument("query", nargs="*", help="The question (prompted for when omitted)")
    parser.add_argument("--conversation", help="Conversation ID to continue")
    parser.add_argument("--language", default="en", choices=["en", "hi"])
    parser.add_argument("--stream", action="store_true", help="Stream the answer")
    args = parser.parse_args()

    query = " ".join(args.query) if args.query else input("Enter your question: ")

    try:
        if args.stream:
            response = stream_chat(query, args.conversation, args.language)
            if response:
                print(f"\nConversation: {response['conversation_id']}")
        else:
            print_response(call_chat(query, args.conversation, args.language))
    except ChatError as e:
        print(f"Chat Error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
