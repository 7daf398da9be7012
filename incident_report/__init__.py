"""Conversational incident reporting: zone id + description extraction over chat."""
