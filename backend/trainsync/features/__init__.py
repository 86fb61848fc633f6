"""
Feature modules for TrainSync.

Each feature is a self-contained module with:
- models.py - SQLAlchemy models
- repository.py - Data access
- service code (sync/, webhook.py, ...) - Business logic
"""
