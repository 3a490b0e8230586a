"""Email provider webhooks"""
