"""Worker process: polls the dispatch API and runs prompts on Ollama."""
