"""
Chat app.

Provides:
- System prompt assembly from uploaded documents
- Streaming relay to the configured inference backend
- Citation marker extraction
"""
