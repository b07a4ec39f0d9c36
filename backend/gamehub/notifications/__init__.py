"""Notification REST endpoints."""
