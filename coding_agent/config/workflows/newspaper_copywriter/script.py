# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Script functions for the newspaper_copywriter workflow.

The copywriter and the chief editor work in separate contexts. Information
only moves between them through these handlers: the editor sees the current
draft and nothing else, the copywriter sees its own drafts and the editor's
feedback.
"""

from datetime import datetime


# Utilities ====================================================================


def response_content(ctx):
    choices = (ctx.last_response or {}).get("choices") or [{}]
    return (choices[0].get("message") or {}).get("content") or ""


def store_article_version(ctx, content, author):
    ctx.common_data.setdefault("article_history", []).append(
        {
            "version": ctx.common_data["current_revision"],
            "content": content,
            "author": author,
            "timestamp": datetime.now().isoformat(),
        }
    )


# Copywriter states ============================================================


def add_initial_assignment(ctx):
    context = ctx.workflow_contexts["copywriter_context"]
    context.add_message(
        {"role": "user", "content": f"Article assignment: {ctx.common_data['article_assignment']}"}
    )


def store_copywriter_draft(ctx):
    draft = ctx.response_content()
    if not draft:
        return
    ctx.common_data["current_revision"] += 1
    ctx.common_data["current_article"] = draft
    ctx.store_article_version(draft, "copywriter")
    ctx.workflow_contexts["copywriter_context"].add_message({"role": "assistant", "content": draft})


def add_editor_feedback(ctx):
    ctx.workflow_contexts["copywriter_context"].add_message(
        {
            "role": "user",
            "content": f"Editorial feedback on revision {ctx.common_data['current_revision']}:\n\n"
            f"{ctx.common_data['editor_feedback']}\n\nPlease return the complete revised article.",
        }
    )


def transition_to_editor(ctx):
    return "editor_review"


# Chief editor states ==========================================================


def prepare_editor_context(ctx):
    context = ctx.workflow_contexts["editor_context"]
    context.clear_messages()
    context.add_message(
        {
            "role": "user",
            "content": f"Please review revision {ctx.common_data['current_revision']} of this article:\n\n"
            f"{ctx.common_data.get('current_article', '')}",
        }
    )


def store_editor_verdict(ctx):
    decision = ctx.last_decision or {}
    arguments = (decision.get("function") or {}).get("arguments") or {}
    ctx.common_data["approved"] = arguments.get("approved") is True
    ctx.common_data["editor_feedback"] = arguments.get("feedback") or ctx.response_content()


def transition_after_review(ctx):
    if ctx.common_data["approved"]:
        ctx.common_data["final_article"] = ctx.common_data["current_article"]
        return "stop"
    if ctx.common_data["current_revision"] >= ctx.common_data["max_revisions"]:
        # Publish the last draft rather than loop forever
        ctx.common_data["final_article"] = ctx.common_data["current_article"]
        return "stop"
    return "revise"
