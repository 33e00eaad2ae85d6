"""Chat front-end service"""
from .service import ChatService, ChatReply, APOLOGY_REPLY, CLEARED_REPLY
