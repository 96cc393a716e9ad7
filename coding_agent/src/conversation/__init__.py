# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .ordering import sort_messages_for_tool_calls
from .session import ConversationSession, SessionCallbacks

__all__ = ["ConversationSession", "SessionCallbacks", "sort_messages_for_tool_calls"]
