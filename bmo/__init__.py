"""Backend package: settings, DB models, stores, pipelines and the HTTP API.

B-mo glues Appwrite (auth/storage), a Postgres+pgvector database and Azure
AI endpoints together behind a multi-tenant accounting API.
"""
