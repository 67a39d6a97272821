"""Core library of the track cut study"""
