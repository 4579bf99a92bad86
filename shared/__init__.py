"""
Shared building blocks for DevPilot services: record schemas, settings,
logging setup, the key-value store and the LLM client.
"""
