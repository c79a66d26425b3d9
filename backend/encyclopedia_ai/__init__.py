"""
Encyclopedia AI assistant backend.

A FastAPI service exposing the encyclopedia's research assistant: a
multi-turn agent that consults the article catalog through tools before
streaming its answer to the reader.
"""
