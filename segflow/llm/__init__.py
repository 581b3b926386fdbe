"""Collaborator boundary: chat, embedding and graph-extraction clients."""
