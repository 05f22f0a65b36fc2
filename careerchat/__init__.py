# CareerChat - Job-Search Chat Assistant
# Version 0.1.0

"""
CareerChat pairs a job seeker with a recruiter-style AI assistant.

Layers:
1. Conversation Store - Threads and append-only message history
2. Session State - Per-session actors holding context and question history
3. Chat Orchestrator - Prompt building and provider fallback
4. Stream Transport - Framed streaming of replies to the browser
"""

__version__ = "0.1.0"
