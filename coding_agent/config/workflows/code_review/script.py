# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Script functions for the code_review workflow."""


def response_content(ctx):
    """Text content of the last raw completion, or ''."""
    choices = (ctx.last_response or {}).get("choices") or [{}]
    return (choices[0].get("message") or {}).get("content") or ""


def store_submission(ctx):
    """Keep the coder's latest submission and count the review round."""
    decision = ctx.last_decision or {}
    function = decision.get("function") or {}
    if function.get("name") == "submit_code":
        ctx.common_data["final_code"] = function["arguments"].get("code", "")
    else:
        ctx.common_data["final_code"] = ctx.response_content()
    ctx.common_data["review_round"] = ctx.common_data.get("review_round", 0) + 1


def prepare_revision(ctx):
    """Carry the reviewer feedback over and stop revising after `max_rounds`."""
    decision = ctx.last_decision or {}
    arguments = (decision.get("function") or {}).get("arguments") or {}
    ctx.common_data["feedback"] = arguments.get("feedback")
    ctx.common_data["can_revise"] = ctx.common_data["review_round"] < ctx.common_data["max_rounds"]
