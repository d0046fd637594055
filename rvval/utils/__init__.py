"""Utility modules for property resolution"""
