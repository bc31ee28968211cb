"""Services package for the chat service.

This package provides:
- Global rate limiting over the shared store (rate_limiter)
- Memoization of expensive calls in the shared store (result_cache)
- Transcript models (transcript)
- The bounded tool-calling agent loop and its prompts (agent, prompts)
- Chat turn coordination (turn)

Import from the modules directly: providers depend on the transcript
models and the agent loop depends on providers.
"""
