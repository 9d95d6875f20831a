"""Core: configuration and exceptions"""
