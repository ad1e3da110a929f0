"""Clients for the Azure AI endpoints: Document Intelligence, embeddings and chat."""
