"""Conversation buffer, windowing and summarization."""

from parley.conversation.context import ContextOptions, ConversationContext
from parley.conversation.messages import (
    SUMMARY_SENDER,
    Message,
    ToolCall,
    apply_window,
    count_blocks,
    sanitize_sender,
    split_blocks,
)
from parley.conversation.summarizer import Summarizer, chunk_rows, render_line

__all__ = [
    "ContextOptions",
    "ConversationContext",
    "SUMMARY_SENDER",
    "Message",
    "ToolCall",
    "apply_window",
    "count_blocks",
    "sanitize_sender",
    "split_blocks",
    "Summarizer",
    "chunk_rows",
    "render_line",
]
