"""
Chat history app.

Keeps chat sessions for the single admin user. The chat endpoint never
reads from here: the client sends the conversation with each request.
"""
