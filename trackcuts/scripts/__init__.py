"""Command line entry points, one per study"""
