"""MailHub: queued email notifications with delivery tracking"""

__version__ = "1.0.0"
