"""Core analysis, scheduling and rendering"""
