"""Shared error types"""
