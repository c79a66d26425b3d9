"""
Encyclopedia assistant agent core.

- request_queue: process-wide FIFO gate for upstream model calls
- llm_client: blocking and streaming completions over HTTP
- tools / content_store: read-only tools over the article catalog
- conversation / prompts / directive / dedup: per-run context handling
- agent / emitter: the agent loop and the final answer stream

LLMs decide which tool to call; tools only read, never write.
"""
