"""Shared audio and key utilities"""
