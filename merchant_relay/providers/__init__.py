"""Upstream provider integrations"""
