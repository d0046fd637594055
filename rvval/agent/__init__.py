"""Generative-model helpers for property resolution"""
