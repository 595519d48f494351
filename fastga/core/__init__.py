#!/usr/bin/env python3
"""
Core infrastructure for the FastGA pipeline
"""
