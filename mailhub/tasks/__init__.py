"""Celery background tasks"""
