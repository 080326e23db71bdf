"""
Uploaded document handling.

Documents are kept by the client and sent with each chat request;
this app only turns them into text for the system prompt.
"""
