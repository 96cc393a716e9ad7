# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Sandboxed expressions for workflow conditions, inline scripts and templates.
"""

from .interpreter import EvaluationScope, ExpressionInterpreter

__all__ = ["EvaluationScope", "ExpressionInterpreter"]
