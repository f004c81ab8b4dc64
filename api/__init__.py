"""
API Module for Groundline Support Bot.

FastAPI application with routes for:
- WhatsApp Cloud API webhooks
- Escalation handling by human operators
- Retrieval debugging
"""
