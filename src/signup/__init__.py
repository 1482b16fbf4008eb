"""
Voice signup agent: scripted account interview over the OpenAI Realtime API.
"""
