# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Model backend integration.

The conversation engine only depends on the `ModelBackend` protocol;
`OpenAIBackend` is the production implementation for any OpenAI-compatible
endpoint.
"""

import logging

from .backend import ModelBackend, OpenAIBackend

# Quieten LLM API call logs to make stdout more useful
logging.getLogger("httpx").setLevel(logging.WARNING)

__all__ = ["ModelBackend", "OpenAIBackend"]
