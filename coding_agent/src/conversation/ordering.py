# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from typing import Any


def sort_messages_for_tool_calls(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Return a copy of `messages` with every tool result placed directly
    after the assistant message that requested it, in the order the calls
    were issued.

    Tool messages whose ``tool_call_id`` no assistant message claims are
    left where they are. The input list is not modified.
    """
    owned_ids: set[str] = set()
    for message in messages:
        if message.get("role") == "assistant":
            for call in message.get("tool_calls") or []:
                owned_ids.add(call.get("id"))

    pending: dict[str, list[dict[str, Any]]] = {}
    for message in messages:
        call_id = message.get("tool_call_id")
        if message.get("role") == "tool" and call_id in owned_ids:
            pending.setdefault(call_id, []).append(message)

    ordered: list[dict[str, Any]] = []
    for message in messages:
        if message.get("role") == "tool" and message.get("tool_call_id") in owned_ids:
            continue
        ordered.append(message)
        if message.get("role") == "assistant":
            for call in message.get("tool_calls") or []:
                ordered.extend(pending.pop(call.get("id"), []))

    return ordered
