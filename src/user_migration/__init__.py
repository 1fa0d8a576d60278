"""Consolidates legacy document-store users into a canonical relational store."""
