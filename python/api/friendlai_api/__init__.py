"""Dispatch API for distributed LLM jobs."""
