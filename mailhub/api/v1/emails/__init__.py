"""Email administration endpoints"""
