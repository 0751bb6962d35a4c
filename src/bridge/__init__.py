"""Realtime relay between Twilio media streams and ElevenLabs conversations.

The bridge never transcodes audio: payloads travel as the base64 strings the
peers produce.
"""
