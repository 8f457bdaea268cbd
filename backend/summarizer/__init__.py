"""
Summarization service - request pipeline for hosted text summarization
"""
__version__ = "1.0.0"
