"""Personalized feed cache and replenishment backend."""
