"""Conversation storage"""
from .store import SessionStore, Session, UsageRecord, SessionNotFoundError
